"""
Application exception hierarchy and the FastAPI handlers that turn it into the
uniform error envelope ``{"success": false, "error": {"code", "message"}}``.
"""

import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stepwise.core.config import settings
from stepwise.models.schemas.responses import ErrorDetail, ErrorResponse
from stepwise.utils.logging import Logger


class AppException(Exception):
    """Base exception for every error the API reports on purpose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }

    def __str__(self) -> str:
        return self.message


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class AuthenticationError(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class AccessDeniedError(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"


class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


class WorkflowUnavailableError(NotFoundError):
    """Workflow is missing or has been disabled."""

    code = "NOT_FOUND_OR_DISABLED"


class ConflictError(AppException):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class InvalidStateTransitionError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, message: str, current: Optional[str] = None, attempted: Optional[str] = None):
        super().__init__(message, details={"current": current, "attempted": attempted})
        self.current = current
        self.attempted = attempted


class DependencyNotSatisfiedError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DEPENDENCY_NOT_SATISFIED"


class IncompleteRequiredStepsError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INCOMPLETE_REQUIRED_STEPS"

    def __init__(self, outstanding: int):
        super().__init__(
            f"{outstanding} required step(s) not yet completed",
            details={"outstanding": outstanding},
        )
        self.outstanding = outstanding


class EmptyWorkflowError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "EMPTY_WORKFLOW"


class FileValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "FILE_VALIDATION_ERROR"


class DatabaseError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "DATABASE_ERROR"


class StorageError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "STORAGE_ERROR"


_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


class ExceptionHandler:
    def __init__(self, logger: Logger):
        self.logger = logger

    def handle_exception(self, e: Exception, request_id: Optional[str]) -> JSONResponse:
        if isinstance(e, AppException):
            if e.status_code >= 500:
                self.logger.error(
                    f"{type(e).__name__}: {e.message}",
                    {"request_id": request_id, "code": e.code},
                )
                message = "an internal error just occurred" if settings.is_production else e.message
            else:
                self.logger.warning(
                    f"{type(e).__name__}: {e.message}",
                    {"request_id": request_id, "code": e.code},
                )
                message = e.message
            return error_response(e.status_code, e.code, message)

        if isinstance(e, StarletteHTTPException):
            code = _HTTP_STATUS_CODES.get(e.status_code, "HTTP_ERROR")
            self.logger.warning(f"HTTP error {e.status_code}: {e.detail}", {"request_id": request_id})
            return error_response(e.status_code, code, str(e.detail))

        if isinstance(e, RequestValidationError):
            errors = [
                f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
                for err in e.errors()
            ]
            self.logger.warning(f"Request validation failed: {errors}", {"request_id": request_id})
            return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "; ".join(errors))

        if isinstance(e, ValueError):
            self.logger.error(f"Value error: {str(e)}", {"request_id": request_id})
            return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", f"validation error: {e}")

        tb_str = traceback.format_exc()
        self.logger.error(
            f"Internal error - Type: {type(e).__name__}, Message: {str(e)}\nTraceback:\n{tb_str}",
            {"request_id": request_id},
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "an internal error just occurred",
        )


def add_exception_handlers(app: FastAPI, logger: Logger) -> None:
    handler = ExceptionHandler(logger)

    async def _handle(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "id", None)
        return handler.handle_exception(exc, request_id)

    app.add_exception_handler(AppException, _handle)
    app.add_exception_handler(StarletteHTTPException, _handle)
    app.add_exception_handler(RequestValidationError, _handle)
    app.add_exception_handler(Exception, _handle)

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from stepwise.utils.logging import Logger

SKIPPED_PATHS = {"/", "/health", "/ping"}


class LogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.id = request_id
        LOGGER = Logger("FastAPIApp", request_context={"request_id": request_id})

        if request.url.path in SKIPPED_PATHS:
            return await call_next(request)

        extra = {
            "method": request.method,
            "url": str(request.url),
            "client": request.headers.get("x-stepwise-client", "unknown"),
            "ip": request.client.host if request.client else None,
        }
        LOGGER.info("Incoming Request", extra)

        try:
            response = await call_next(request)
        except Exception as e:
            extra.update({"error": str(e)})
            LOGGER.error("Error in request processing", extra=extra)
            raise

        extra.update({"status_code": response.status_code})
        LOGGER.info("Response", extra=extra)

        response.headers["X-Request-ID"] = request_id
        return response

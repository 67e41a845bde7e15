from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.models.db.users import User
from stepwise.models.schemas.attachments import AttachmentBatchDelete, AttachmentRead
from stepwise.services.attachments.attachment_service import AttachmentService
from stepwise.services.attachments.helpers import classify_file, max_size_for
from stepwise.utils.exception import FileValidationError
from stepwise.utils.logging.otel_logger import logger
from stepwise.utils.response import success_response

router = APIRouter(
    prefix="/attachments",
    tags=["Attachments"],
)

UPLOAD_CHUNK_SIZE = 1024 * 1024


def _split_tags(tags: Optional[str]) -> List[str]:
    return [tag.strip() for tag in (tags or "").split(",") if tag.strip()]


async def _read_within_limit(file: UploadFile) -> bytes:
    """Read an upload in chunks, stopping as soon as it passes the size limit for its type."""
    limit = max_size_for(classify_file(file.filename or ""))
    chunks = []
    received = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        received += len(chunk)
        if received > limit:
            logger.warning(f"Rejected upload '{file.filename}': larger than {limit} bytes")
            raise FileValidationError(f"File exceeds the maximum size of {limit // (1024 * 1024)}MB")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/execution-records/{record_id}/upload", status_code=status.HTTP_201_CREATED)
async def upload_to_record(
    record_id: UUID,
    file: UploadFile = File(...),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    """Attach a file to an execution record"""
    content = await _read_within_limit(file)
    attachment = attachment_service.upload_to_record(
        record_id, current_user, file.filename, file.content_type, content, description, _split_tags(tags)
    )
    return success_response(AttachmentRead.model_validate(attachment), "File uploaded")


@router.post("/reviews/{review_id}/upload", status_code=status.HTTP_201_CREATED)
async def upload_to_review(
    review_id: UUID,
    file: UploadFile = File(...),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    """Attach a file to a review"""
    content = await _read_within_limit(file)
    attachment = attachment_service.upload_to_review(
        review_id, current_user, file.filename, file.content_type, content, description, _split_tags(tags)
    )
    return success_response(AttachmentRead.model_validate(attachment), "File uploaded")


@router.get("/stats")
async def get_attachment_stats(
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    return success_response(attachment_service.get_stats(current_user))


@router.post("/batch-delete")
async def batch_delete_attachments(
    payload: AttachmentBatchDelete,
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    deleted = attachment_service.batch_delete_attachments(payload.attachment_ids, current_user)
    return success_response({"deleted": deleted}, f"{deleted} attachment(s) deleted")


@router.get("/execution-records/{record_id}")
async def list_record_attachments(
    record_id: UUID,
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    attachments = attachment_service.list_for_record(record_id, current_user)
    return success_response([AttachmentRead.model_validate(a) for a in attachments])


@router.get("/{attachment_id}")
async def get_attachment(
    attachment_id: UUID,
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    attachment = attachment_service.get_attachment(attachment_id, current_user)
    return success_response(AttachmentRead.model_validate(attachment))


@router.get("/{attachment_id}/download")
async def download_attachment(
    attachment_id: UUID,
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    path, original_name, mime_type = attachment_service.get_download(attachment_id, current_user)
    return FileResponse(path, filename=original_name, media_type=mime_type or "application/octet-stream")


@router.delete("/{attachment_id}")
async def delete_attachment(
    attachment_id: UUID,
    current_user: User = Depends(get_current_user),
    attachment_service: AttachmentService = Depends(AttachmentService),
):
    attachment_service.delete_attachment(attachment_id, current_user)
    return success_response(message="Attachment deleted")

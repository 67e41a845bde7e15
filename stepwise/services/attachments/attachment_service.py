from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.attachments import Attachment
from stepwise.models.db.executions import Execution, ExecutionRecord
from stepwise.models.db.reviews import Review
from stepwise.models.db.users import User
from stepwise.services.attachments.helpers import classify_file, sanitize_filename, validate_upload
from stepwise.services.attachments.storage import LocalFileStorage, get_file_storage
from stepwise.services.executions.helpers import utcnow
from stepwise.utils.exception import DatabaseError, FileValidationError, NotFoundError
from stepwise.utils.logging.otel_logger import logger
from stepwise.utils.validation import Invalid


class AttachmentService:
    def __init__(
        self,
        db: Session = Depends(get_db),
        storage: LocalFileStorage = Depends(get_file_storage),
    ):
        self.db = db
        self.storage = storage

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {str(e)}")
            raise DatabaseError(f"A database error occurred while trying to {action}.")

    def _owner_id(self, attachment: Attachment) -> Optional[UUID]:
        if attachment.execution_record is not None:
            return attachment.execution_record.execution.user_id
        if attachment.review is not None:
            return attachment.review.user_id
        return None

    def _get_attachment(self, attachment_id: UUID, user: User) -> Attachment:
        attachment = self.db.get(Attachment, attachment_id)
        if not attachment or (not user.is_admin and self._owner_id(attachment) != user.user_id):
            raise NotFoundError("Attachment not found or access denied")
        return attachment

    def _get_record(self, record_id: UUID, user: User) -> ExecutionRecord:
        record = self.db.get(ExecutionRecord, record_id)
        if not record or (not user.is_admin and record.execution.user_id != user.user_id):
            raise NotFoundError("Execution record not found or access denied")
        return record

    def _get_review(self, review_id: UUID, user: User) -> Review:
        review = self.db.get(Review, review_id)
        if not review or (not user.is_admin and review.user_id != user.user_id):
            raise NotFoundError("Review not found or access denied")
        return review

    def _store(
        self,
        filename: str,
        content_type: Optional[str],
        content: bytes,
        description: Optional[str],
        tags: Optional[List[str]],
        **owner,
    ) -> Attachment:
        result = validate_upload(filename, content_type, len(content))
        if isinstance(result, Invalid):
            logger.warning(f"Rejected upload '{filename}': {result.errors}")
            raise FileValidationError("; ".join(result.errors), details={"errors": result.errors})

        sanitized = sanitize_filename(filename)
        path = self.storage.save(content, sanitized)
        attachment = Attachment(
            file_name=path.name,
            original_name=filename,
            file_type=classify_file(filename).value,
            file_size=len(content),
            file_path=str(path),
            mime_type=content_type,
            description=description,
            tags=list(tags or []),
            uploaded_at=utcnow(),
            **owner,
        )
        self.db.add(attachment)
        try:
            self._commit("save the attachment")
        except DatabaseError:
            self.storage.delete(str(path))
            raise
        self.db.refresh(attachment)
        logger.info(f"Attachment {attachment.id} stored at {path}")
        return attachment

    def upload_to_record(
        self,
        record_id: UUID,
        user: User,
        filename: str,
        content_type: Optional[str],
        content: bytes,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Attachment:
        record = self._get_record(record_id, user)
        return self._store(filename, content_type, content, description, tags, execution_record_id=record.id)

    def upload_to_review(
        self,
        review_id: UUID,
        user: User,
        filename: str,
        content_type: Optional[str],
        content: bytes,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Attachment:
        review = self._get_review(review_id, user)
        return self._store(filename, content_type, content, description, tags, review_id=review.id)

    def list_for_record(self, record_id: UUID, user: User) -> List[Attachment]:
        record = self._get_record(record_id, user)
        return list(
            self.db.scalars(
                select(Attachment)
                .where(Attachment.execution_record_id == record.id)
                .order_by(Attachment.uploaded_at.desc())
            ).all()
        )

    def get_attachment(self, attachment_id: UUID, user: User) -> Attachment:
        return self._get_attachment(attachment_id, user)

    def get_download(self, attachment_id: UUID, user: User) -> Tuple[Path, str, Optional[str]]:
        """Path, original name and MIME type of a stored attachment."""
        attachment = self._get_attachment(attachment_id, user)
        if not self.storage.exists(attachment.file_path):
            raise NotFoundError("Attachment file is missing from storage")
        return Path(attachment.file_path), attachment.original_name, attachment.mime_type

    def delete_attachment(self, attachment_id: UUID, user: User) -> None:
        attachment = self._get_attachment(attachment_id, user)
        file_path = attachment.file_path
        self.db.delete(attachment)
        self._commit("delete the attachment")
        self.storage.delete(file_path)

    def batch_delete_attachments(self, attachment_ids: Sequence[UUID], user: User) -> int:
        """Delete several attachments; fails without deleting anything if one is missing or foreign."""
        attachments = [self.db.get(Attachment, attachment_id) for attachment_id in set(attachment_ids)]
        if any(
            attachment is None or (not user.is_admin and self._owner_id(attachment) != user.user_id)
            for attachment in attachments
        ):
            raise NotFoundError("One or more attachments were not found or are not accessible")

        file_paths = [attachment.file_path for attachment in attachments]
        for attachment in attachments:
            self.db.delete(attachment)
        self._commit("delete the attachments")
        for path in file_paths:
            self.storage.delete(path)
        return len(attachments)

    def get_stats(self, user: User) -> Dict[str, Any]:
        owned = (
            select(Attachment.file_type, func.count(Attachment.id), func.coalesce(func.sum(Attachment.file_size), 0))
            .outerjoin(Attachment.execution_record)
            .outerjoin(ExecutionRecord.execution)
            .outerjoin(Attachment.review)
            .where(or_(Execution.user_id == user.user_id, Review.user_id == user.user_id))
            .group_by(Attachment.file_type)
        )
        by_type = {
            file_type: {"count": count, "total_size": int(size)}
            for file_type, count, size in self.db.execute(owned).all()
        }
        return {
            "total_files": sum(entry["count"] for entry in by_type.values()),
            "total_size": sum(entry["total_size"] for entry in by_type.values()),
            "by_type": by_type,
        }

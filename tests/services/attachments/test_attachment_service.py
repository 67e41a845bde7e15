from pathlib import Path
from unittest.mock import patch

import pytest

from stepwise.models.db.attachments import Attachment
from stepwise.models.schemas.executions import ExecutionCreate
from stepwise.services.attachments.attachment_service import AttachmentService
from stepwise.utils.exception import DatabaseError, FileValidationError, NotFoundError


@pytest.fixture
def attachment_service(db_session, storage):
    return AttachmentService(db=db_session, storage=storage)


@pytest.fixture
def record(make_workflow, execution_service, user):
    workflow = make_workflow(user)
    execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
    return execution.records[0]


class TestUpload:

    def test_stores_file_and_metadata(self, attachment_service, record, user, storage):
        attachment = attachment_service.upload_to_record(
            record.id, user, "../evidence photo.png", "image/png", b"\x89PNG...", description="before"
        )

        path = Path(attachment.file_path)
        assert path.read_bytes() == b"\x89PNG..."
        assert path.is_relative_to(storage.base_dir)
        assert attachment.file_name.endswith("_evidence_photo.png")
        assert attachment.original_name == "../evidence photo.png"
        assert attachment.file_type == "IMAGE"
        assert attachment.file_size == 7
        assert attachment.description == "before"

    def test_rejected_file_is_never_written(self, attachment_service, record, user, storage, db_session):
        with pytest.raises(FileValidationError) as excinfo:
            attachment_service.upload_to_record(record.id, user, "payload.exe", "application/x-msdownload", b"MZ")

        assert excinfo.value.status_code == 400
        assert not storage.base_dir.exists()
        assert db_session.query(Attachment).count() == 0

    def test_foreign_record_is_hidden(self, attachment_service, record, other_user):
        with pytest.raises(NotFoundError):
            attachment_service.upload_to_record(record.id, other_user, "a.txt", "text/plain", b"x")

    def test_file_removed_when_database_write_fails(self, attachment_service, record, user, storage):
        with patch.object(attachment_service, "_commit", side_effect=DatabaseError("A database error occurred")):
            with pytest.raises(DatabaseError):
                attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"x")

        assert list(storage.base_dir.rglob("*.txt")) == []


class TestManageAttachments:

    def test_list_download_and_delete(self, attachment_service, record, user):
        first = attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"a")
        attachment_service.upload_to_record(record.id, user, "b.csv", "text/csv", b"x,y")

        assert len(attachment_service.list_for_record(record.id, user)) == 2

        path, name, mime = attachment_service.get_download(first.id, user)
        assert path.read_bytes() == b"a"
        assert (name, mime) == ("a.txt", "text/plain")

        attachment_service.delete_attachment(first.id, user)
        assert not path.exists()
        assert len(attachment_service.list_for_record(record.id, user)) == 1

    def test_file_kept_when_delete_cannot_be_committed(self, attachment_service, record, user):
        attachment = attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"a")
        path = Path(attachment.file_path)

        with patch.object(attachment_service, "_commit", side_effect=DatabaseError("A database error occurred")):
            with pytest.raises(DatabaseError):
                attachment_service.delete_attachment(attachment.id, user)
            with pytest.raises(DatabaseError):
                attachment_service.batch_delete_attachments([attachment.id], user)

        assert path.read_bytes() == b"a"

    def test_download_of_missing_file(self, attachment_service, record, user):
        attachment = attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"a")
        Path(attachment.file_path).unlink()

        with pytest.raises(NotFoundError):
            attachment_service.get_download(attachment.id, user)

    def test_batch_delete_is_all_or_nothing(self, attachment_service, record, user, other_user, db_session):
        mine = attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"a")

        with pytest.raises(NotFoundError):
            attachment_service.batch_delete_attachments([mine.id], other_user)
        assert db_session.query(Attachment).count() == 1

        assert attachment_service.batch_delete_attachments([mine.id], user) == 1
        assert db_session.query(Attachment).count() == 0

    def test_stats_group_by_type(self, attachment_service, record, user, other_user):
        attachment_service.upload_to_record(record.id, user, "a.txt", "text/plain", b"abc")
        attachment_service.upload_to_record(record.id, user, "b.md", "text/markdown", b"de")
        attachment_service.upload_to_record(record.id, user, "c.png", "image/png", b"f")

        stats = attachment_service.get_stats(user)

        assert stats["total_files"] == 3
        assert stats["total_size"] == 6
        assert stats["by_type"]["TEXT"] == {"count": 2, "total_size": 5}
        assert attachment_service.get_stats(other_user)["total_files"] == 0

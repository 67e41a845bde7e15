from pathlib import Path
from unittest.mock import patch

import pytest

from stepwise.models.db.attachments import Attachment
from stepwise.models.db.executions import Execution, ExecutionRecord
from stepwise.models.db.reviews import Review
from stepwise.models.enums import ExecutionStatus, Priority, StepStatus
from stepwise.models.schemas.executions import (
    ExecutionCreate,
    ExecutionFilters,
    ExecutionUpdate,
    StepComplete,
    StepStatusUpdate,
)
from stepwise.models.schemas.reviews import ReviewCreate
from stepwise.models.schemas.workflows import WorkflowStepCreate
from stepwise.services.attachments.attachment_service import AttachmentService
from stepwise.services.reviews.review_service import ReviewService
from stepwise.utils.exception import (
    AccessDeniedError,
    DatabaseError,
    DependencyNotSatisfiedError,
    EmptyWorkflowError,
    IncompleteRequiredStepsError,
    InvalidStateTransitionError,
    NotFoundError,
    WorkflowUnavailableError,
)


class TestStartExecution:

    def test_creates_in_progress_execution_with_pending_records_in_step_order(
        self, execution_service, make_workflow, user, observer
    ):
        workflow = make_workflow(user)

        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

        assert execution.status == ExecutionStatus.IN_PROGRESS.value
        assert execution.started_at is not None
        assert execution.progress == 0
        assert execution.title == workflow.name
        assert [r.status for r in execution.records] == [StepStatus.PENDING.value] * 2
        assert [r.sequence for r in execution.records] == [1, 2]
        assert [r.step_id for r in execution.records] == [s.id for s in workflow.steps]
        observer.execution_transitioned.assert_called_once()

    def test_deferred_start_waits_in_pending_until_begun(self, execution_service, make_workflow, user):
        workflow = make_workflow(user)

        execution = execution_service.start_execution(
            user, ExecutionCreate(workflow_id=workflow.id, start_immediately=False)
        )
        assert execution.status == ExecutionStatus.PENDING.value
        assert execution.started_at is None

        execution = execution_service.begin_execution(execution.id, user)
        assert execution.status == ExecutionStatus.IN_PROGRESS.value
        assert execution.started_at is not None

    def test_inactive_workflow_is_unavailable(self, execution_service, make_workflow, user):
        workflow = make_workflow(user, is_active=False)

        with pytest.raises(WorkflowUnavailableError) as excinfo:
            execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        assert excinfo.value.status_code == 404
        assert excinfo.value.code == "NOT_FOUND_OR_DISABLED"

    def test_foreign_workflow_is_denied(self, execution_service, make_workflow, user, other_user):
        workflow = make_workflow(other_user)

        with pytest.raises(AccessDeniedError):
            execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

    def test_workflow_without_steps_is_rejected(self, execution_service, make_workflow, user, db_session):
        workflow = make_workflow(user, steps=())

        with pytest.raises(EmptyWorkflowError):
            execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        assert db_session.query(Execution).count() == 0


class TestExecutionLifecycle:

    @pytest.fixture(autouse=True)
    def _execution(self, execution_service, make_workflow, user):
        self.service = execution_service
        self.user = user
        self.workflow = make_workflow(user)
        self.execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=self.workflow.id))
        self.first, self.second = self.execution.records

    def test_two_required_steps_progress_then_auto_complete(self, observer):
        self.service.complete_step(self.execution.id, self.first.id, self.user)

        assert self.execution.status == ExecutionStatus.IN_PROGRESS.value
        assert self.execution.progress == 50
        assert self.execution.completed_at is None

        self.service.complete_step(self.execution.id, self.second.id, self.user)

        assert self.execution.status == ExecutionStatus.COMPLETED.value
        assert self.execution.progress == 100
        assert self.execution.completed_at is not None
        observer.execution_transitioned.assert_called_with(
            self.execution,
            ExecutionStatus.IN_PROGRESS.value,
            ExecutionStatus.COMPLETED.value,
            reason="required steps completed",
        )

    def test_complete_execution_reports_outstanding_required_steps(self):
        self.service.complete_step(self.execution.id, self.first.id, self.user)

        with pytest.raises(IncompleteRequiredStepsError) as excinfo:
            self.service.complete_execution(self.execution.id, self.user)

        assert excinfo.value.outstanding == 1
        assert "1 required step(s) not yet completed" in excinfo.value.message
        assert self.execution.status == ExecutionStatus.IN_PROGRESS.value

    def test_pause_resume_round_trip_is_repeatable(self):
        for _ in range(2):
            paused = self.service.pause_execution(self.execution.id, self.user)
            assert paused.status == ExecutionStatus.PAUSED.value
            assert paused.paused_at is not None

            resumed = self.service.resume_execution(self.execution.id, self.user)
            assert resumed.status == ExecutionStatus.IN_PROGRESS.value
            assert resumed.resumed_at is not None

    def test_pause_requires_in_progress(self):
        self.service.pause_execution(self.execution.id, self.user)

        with pytest.raises(InvalidStateTransitionError):
            self.service.pause_execution(self.execution.id, self.user)

    def test_cancel_is_terminal(self):
        self.service.cancel_execution(self.execution.id, self.user)
        assert self.execution.status == ExecutionStatus.CANCELLED.value

        with pytest.raises(InvalidStateTransitionError):
            self.service.resume_execution(self.execution.id, self.user)
        with pytest.raises(InvalidStateTransitionError):
            self.service.complete_execution(self.execution.id, self.user)
        assert self.execution.status == ExecutionStatus.CANCELLED.value

    def test_cancel_from_paused(self):
        self.service.pause_execution(self.execution.id, self.user)

        cancelled = self.service.cancel_execution(self.execution.id, self.user)

        assert cancelled.status == ExecutionStatus.CANCELLED.value

    def test_failed_step_fails_the_execution(self):
        record = self.service.fail_step(self.execution.id, self.first.id, self.user, reason="disk full")

        assert record.status == StepStatus.FAILED.value
        assert record.notes == "disk full"
        assert record.completed_at is not None
        assert self.execution.status == ExecutionStatus.FAILED.value

    def test_required_step_cannot_be_skipped(self):
        with pytest.raises(InvalidStateTransitionError):
            self.service.skip_step(self.execution.id, self.first.id, self.user, reason="not needed")
        assert self.first.status == StepStatus.PENDING.value

    def test_steps_are_frozen_while_paused(self):
        self.service.pause_execution(self.execution.id, self.user)

        with pytest.raises(InvalidStateTransitionError):
            self.service.start_step(self.execution.id, self.first.id, self.user)

    def test_completed_step_records_duration(self):
        self.service.start_step(self.execution.id, self.first.id, self.user)
        assert self.first.status == StepStatus.IN_PROGRESS.value
        assert self.first.started_at is not None

        record = self.service.complete_step(
            self.execution.id, self.first.id, self.user, StepComplete(notes="done", result={"ok": True})
        )

        assert record.status == StepStatus.COMPLETED.value
        assert record.actual_duration == 0
        assert record.notes == "done"
        assert record.result == {"ok": True}

    def test_completed_step_cannot_be_restarted(self):
        self.service.complete_step(self.execution.id, self.first.id, self.user)

        with pytest.raises(InvalidStateTransitionError):
            self.service.start_step(self.execution.id, self.first.id, self.user)

    def test_update_step_status_addresses_record_by_step(self):
        step_id = self.workflow.steps[0].id

        record = self.service.update_step_status(
            self.execution.id,
            step_id,
            self.user,
            StepStatusUpdate(status=StepStatus.COMPLETED, notes="checked", data={"count": 3}),
        )

        assert record.id == self.first.id
        assert record.status == StepStatus.COMPLETED.value
        assert record.completed_at is not None
        assert record.data == {"count": 3}
        assert self.execution.progress == 50

    def test_update_step_status_unknown_step(self):
        with pytest.raises(NotFoundError):
            self.service.update_step_status(
                self.execution.id,
                self.execution.id,
                self.user,
                StepStatusUpdate(status=StepStatus.COMPLETED),
            )

    def test_other_users_cannot_touch_the_execution(self, other_user):
        with pytest.raises(NotFoundError) as excinfo:
            self.service.pause_execution(self.execution.id, other_user)
        assert "not found or access denied" in excinfo.value.message

    def test_next_step_follows_sequence(self):
        assert self.service.get_next_step(self.execution.id, self.user).id == self.first.id

        self.service.complete_step(self.execution.id, self.first.id, self.user)

        assert self.service.get_next_step(self.execution.id, self.user).id == self.second.id

    def test_update_execution_metadata(self):
        updated = self.service.update_execution(
            self.execution.id,
            self.user,
            ExecutionUpdate(title="Friday release", priority=Priority.URGENT, tags=["release"]),
        )

        assert updated.title == "Friday release"
        assert updated.priority == Priority.URGENT.value
        assert updated.tags == ["release"]

    def test_review_notes_are_stamped(self):
        execution = self.service.add_review_notes(self.execution.id, self.user, "went smoothly")

        assert execution.review_notes == "went smoothly"
        assert execution.reviewed_at is not None

    def test_list_filters_by_status_and_tag(self, make_workflow):
        other = self.service.start_execution(
            self.user, ExecutionCreate(workflow_id=self.workflow.id, tags=["hotfix"])
        )
        self.service.pause_execution(other.id, self.user)

        paused, total = self.service.list_executions(self.user, ExecutionFilters(status=ExecutionStatus.PAUSED))
        assert total == 1
        assert paused[0].id == other.id

        tagged, total = self.service.list_executions(self.user, ExecutionFilters(tags=["hotfix"]))
        assert [e.id for e in tagged] == [other.id]

    def test_stats_include_per_step_completion(self):
        self.service.complete_step(self.execution.id, self.first.id, self.user)

        stats = self.service.get_stats(self.user)

        assert stats["total_executions"] == 1
        assert stats["status_breakdown"][ExecutionStatus.IN_PROGRESS.value] == 1
        by_step = {entry["step_name"]: entry for entry in stats["step_stats"]}
        assert by_step["Prepare"]["completion_rate"] == 100.0
        assert by_step["Ship"]["completion_rate"] == 0.0


class TestDependencyGate:

    def test_start_step_waits_for_dependency(self, execution_service, make_workflow, user):
        workflow = make_workflow(
            user,
            steps=[
                WorkflowStepCreate(name="Build", order=1, is_required=True),
                WorkflowStepCreate(name="Deploy", order=2, is_required=True, dependencies=[1]),
            ],
        )
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        build, deploy = execution.records

        assert execution_service.check_dependencies(deploy.id) is False
        with pytest.raises(DependencyNotSatisfiedError):
            execution_service.start_step(execution.id, deploy.id, user)
        assert deploy.status == StepStatus.PENDING.value

        execution_service.complete_step(execution.id, build.id, user)

        assert execution_service.check_dependencies(deploy.id) is True
        record = execution_service.start_step(execution.id, deploy.id, user)
        assert record.status == StepStatus.IN_PROGRESS.value

    def test_complete_step_waits_for_dependency(self, execution_service, make_workflow, user):
        workflow = make_workflow(
            user,
            steps=[
                WorkflowStepCreate(name="Build", order=1, is_required=True),
                WorkflowStepCreate(name="Deploy", order=2, is_required=True, dependencies=[1]),
            ],
        )
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        build, deploy = execution.records

        with pytest.raises(DependencyNotSatisfiedError):
            execution_service.complete_step(execution.id, deploy.id, user)
        with pytest.raises(DependencyNotSatisfiedError):
            execution_service.update_step_status(
                execution.id, deploy.step_id, user, StepStatusUpdate(status=StepStatus.COMPLETED)
            )
        assert deploy.status == StepStatus.PENDING.value
        assert execution.status == ExecutionStatus.IN_PROGRESS.value

        execution_service.complete_step(execution.id, build.id, user)
        execution_service.complete_step(execution.id, deploy.id, user)

        assert execution.status == ExecutionStatus.COMPLETED.value

    def test_step_without_dependencies_passes(self, execution_service, make_workflow, user):
        workflow = make_workflow(user)
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

        assert execution_service.check_dependencies(execution.records[0].id) is True


class TestOptionalSteps:

    def test_progress_uses_all_steps_when_none_required(self, execution_service, make_workflow, user):
        workflow = make_workflow(user, steps=(("Read", False), ("Note", False), ("Share", False), ("Archive", False)))
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

        execution_service.complete_step(execution.id, execution.records[0].id, user)

        assert execution.progress == 25
        assert execution.status == ExecutionStatus.IN_PROGRESS.value

    def test_optional_step_may_be_skipped(self, execution_service, make_workflow, user):
        workflow = make_workflow(user, steps=(("Prepare", True), ("Announce", False)))
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

        record = execution_service.skip_step(execution.id, execution.records[1].id, user, reason="quiet week")

        assert record.status == StepStatus.SKIPPED.value
        assert record.notes == "quiet week"
        assert execution.status == ExecutionStatus.IN_PROGRESS.value


class TestDeleteExecution:

    def test_delete_removes_records_attachments_review_and_files(
        self, execution_service, make_workflow, user, db_session, storage
    ):
        workflow = make_workflow(user)
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        attachments = AttachmentService(db=db_session, storage=storage)
        record_file = attachments.upload_to_record(
            execution.records[0].id, user, "notes.txt", "text/plain", b"step notes"
        )

        execution_service.cancel_execution(execution.id, user)
        review = ReviewService(db=db_session, storage=storage).create_review(
            user, ReviewCreate(execution_id=execution.id, title="Post mortem", rating=3)
        )
        review_file = attachments.upload_to_review(review.id, user, "chart.png", "image/png", b"\x89PNG data")
        paths = [Path(record_file.file_path), Path(review_file.file_path)]
        assert all(path.exists() for path in paths)

        execution_service.delete_execution(execution.id, user)

        assert db_session.query(Execution).count() == 0
        assert db_session.query(ExecutionRecord).count() == 0
        assert db_session.query(Attachment).count() == 0
        assert db_session.query(Review).count() == 0
        assert not any(path.exists() for path in paths)

    def test_delete_tolerates_missing_files(self, execution_service, make_workflow, user, db_session, storage):
        workflow = make_workflow(user)
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        attachment = AttachmentService(db=db_session, storage=storage).upload_to_record(
            execution.records[0].id, user, "notes.txt", "text/plain", b"step notes"
        )
        Path(attachment.file_path).unlink()

        execution_service.delete_execution(execution.id, user)

        assert db_session.query(Attachment).count() == 0

    def test_files_kept_when_delete_cannot_be_committed(
        self, execution_service, make_workflow, user, db_session, storage
    ):
        workflow = make_workflow(user)
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        attachment = AttachmentService(db=db_session, storage=storage).upload_to_record(
            execution.records[0].id, user, "notes.txt", "text/plain", b"step notes"
        )
        path = Path(attachment.file_path)

        with patch.object(execution_service, "_commit", side_effect=DatabaseError("A database error occurred")):
            with pytest.raises(DatabaseError):
                execution_service.delete_execution(execution.id, user)

        assert path.read_bytes() == b"step notes"

import pytest

from stepwise.models.schemas.executions import ExecutionCreate
from stepwise.models.schemas.reviews import ReviewCreate, ReviewUpdate
from stepwise.services.attachments.attachment_service import AttachmentService
from stepwise.services.reviews.review_service import ReviewService
from stepwise.utils.exception import ConflictError, InvalidStateTransitionError, NotFoundError


@pytest.fixture
def review_service(db_session, storage):
    return ReviewService(db=db_session, storage=storage)


@pytest.fixture
def finished(make_workflow, execution_service, user):
    workflow = make_workflow(user, steps=(("Only", True),))

    def _run(complete=True):
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))
        if complete:
            execution_service.complete_step(execution.id, execution.records[0].id, user)
        else:
            execution_service.cancel_execution(execution.id, user)
        return execution

    return _run


class TestCreateReview:

    def test_running_execution_cannot_be_reviewed(self, review_service, make_workflow, execution_service, user):
        workflow = make_workflow(user)
        execution = execution_service.start_execution(user, ExecutionCreate(workflow_id=workflow.id))

        with pytest.raises(InvalidStateTransitionError):
            review_service.create_review(user, ReviewCreate(execution_id=execution.id, title="Too early"))

    def test_one_review_per_execution(self, review_service, finished, user):
        execution = finished()
        review = review_service.create_review(
            user, ReviewCreate(execution_id=execution.id, title="Smooth", rating=5, tags=["release"])
        )

        assert review.execution_id == execution.id
        assert review.tags == ["release"]
        with pytest.raises(ConflictError):
            review_service.create_review(user, ReviewCreate(execution_id=execution.id, title="Again"))

    def test_foreign_execution_is_hidden(self, review_service, finished, other_user):
        execution = finished()

        with pytest.raises(NotFoundError):
            review_service.create_review(other_user, ReviewCreate(execution_id=execution.id, title="Nope"))


class TestManageReviews:

    def test_update_and_list(self, review_service, finished, user):
        first = review_service.create_review(user, ReviewCreate(execution_id=finished().id, title="A", rating=4))
        review_service.create_review(user, ReviewCreate(execution_id=finished(False).id, title="B", rating=2))

        updated = review_service.update_review(first.id, user, ReviewUpdate(rating=3, metadata={"k": 1}))
        assert updated.rating == 3
        assert updated.review_metadata == {"k": 1}

        items, total = review_service.list_reviews(user, rating=2)
        assert total == 1
        assert items[0].title == "B"

    def test_delete_removes_attachment_files(self, review_service, finished, user, db_session, storage):
        review = review_service.create_review(user, ReviewCreate(execution_id=finished().id, title="A"))
        attachment = AttachmentService(db=db_session, storage=storage).upload_to_review(
            review.id, user, "notes.md", "text/markdown", b"# notes"
        )

        review_service.delete_review(review.id, user)

        assert not storage.exists(attachment.file_path)
        with pytest.raises(NotFoundError):
            review_service.get_review(review.id, user)


def test_analytics(review_service, finished, user):
    review_service.create_review(user, ReviewCreate(execution_id=finished().id, title="A", rating=5, tags=["ops"]))
    review_service.create_review(
        user, ReviewCreate(execution_id=finished().id, title="B", rating=4, tags=["ops", "db"])
    )
    review_service.create_review(user, ReviewCreate(execution_id=finished(False).id, title="C"))

    analytics = review_service.get_analytics(user)

    assert analytics["total_reviews"] == 3
    assert analytics["average_rating"] == 4.5
    assert analytics["rating_distribution"] == {"1": 0, "2": 0, "3": 0, "4": 1, "5": 1}
    assert analytics["top_tags"][0] == {"tag": "ops", "count": 2}
    assert analytics["reviewed_completed_executions"] == 2
    assert sum(month["count"] for month in analytics["reviews_by_month"]) == 3

from collections import Counter
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.executions import Execution
from stepwise.models.db.reviews import Review
from stepwise.models.db.users import User
from stepwise.models.enums import TERMINAL_EXECUTION_STATUSES, ExecutionStatus
from stepwise.models.schemas.reviews import ReviewCreate, ReviewUpdate
from stepwise.services.attachments.storage import LocalFileStorage, get_file_storage
from stepwise.services.executions.helpers import as_utc, utcnow
from stepwise.utils.exception import ConflictError, DatabaseError, InvalidStateTransitionError, NotFoundError
from stepwise.utils.logging.otel_logger import logger

_TERMINAL_VALUES = {status.value for status in TERMINAL_EXECUTION_STATUSES}


class ReviewService:
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

    def _get_review(self, review_id: UUID, user: User) -> Review:
        review = self.db.get(Review, review_id)
        if not review or (not user.is_admin and review.user_id != user.user_id):
            raise NotFoundError("Review not found or access denied")
        return review

    def create_review(self, user: User, payload: ReviewCreate) -> Review:
        """Write the retrospective of a finished execution. One review per execution."""
        execution = self.db.get(Execution, payload.execution_id)
        if not execution or execution.user_id != user.user_id:
            raise NotFoundError("Execution not found or access denied")
        if execution.status not in _TERMINAL_VALUES:
            raise InvalidStateTransitionError(
                f"Only finished executions can be reviewed (currently {execution.status})",
                current=execution.status,
            )
        if execution.review is not None:
            raise ConflictError("This execution already has a review")

        now = utcnow()
        review = Review(
            user_id=user.user_id,
            execution_id=execution.id,
            title=payload.title,
            content=payload.content,
            rating=payload.rating,
            lessons=payload.lessons,
            improvements=payload.improvements,
            tags=list(payload.tags),
            is_public=payload.is_public,
            review_metadata=payload.metadata,
            created_at=now,
            updated_at=now,
        )
        self.db.add(review)
        self._commit("create the review")
        self.db.refresh(review)
        logger.info(f"Review {review.id} created for execution {execution.id}")
        return review

    def get_review(self, review_id: UUID, user: User) -> Review:
        return self._get_review(review_id, user)

    def list_reviews(
        self,
        user: User,
        rating: Optional[int] = None,
        execution_id: Optional[UUID] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Review], int]:
        query = select(Review).where(Review.user_id == user.user_id)
        if rating is not None:
            query = query.where(Review.rating == rating)
        if execution_id:
            query = query.where(Review.execution_id == execution_id)
        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        items = self.db.scalars(
            query.order_by(Review.created_at.desc(), Review.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return list(items), total

    def update_review(self, review_id: UUID, user: User, payload: ReviewUpdate) -> Review:
        review = self._get_review(review_id, user)
        changes = payload.model_dump(exclude_unset=True)
        if "metadata" in changes:
            review.review_metadata = changes.pop("metadata")
        for field, value in changes.items():
            setattr(review, field, value)
        review.updated_at = utcnow()
        self._commit("update the review")
        self.db.refresh(review)
        return review

    def delete_review(self, review_id: UUID, user: User) -> None:
        review = self._get_review(review_id, user)
        file_paths = [attachment.file_path for attachment in review.attachments]
        self.db.delete(review)
        self._commit("delete the review")
        for path in file_paths:
            self.storage.delete(path)

    def get_analytics(self, user: User) -> Dict[str, Any]:
        """Rating distribution, top tags and monthly volume of the user's reviews."""
        reviews = self.db.scalars(select(Review).where(Review.user_id == user.user_id)).all()
        ratings = [review.rating for review in reviews if review.rating is not None]

        distribution = {str(value): 0 for value in range(1, 6)}
        for value in ratings:
            distribution[str(value)] += 1

        tag_counts = Counter(tag for review in reviews for tag in (review.tags or []))
        by_month = Counter(
            as_utc(review.created_at).strftime("%Y-%m") for review in reviews if review.created_at
        )
        reviewed_completed = sum(
            1 for review in reviews if review.execution.status == ExecutionStatus.COMPLETED.value
        )

        return {
            "total_reviews": len(reviews),
            "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
            "rating_distribution": distribution,
            "top_tags": [{"tag": tag, "count": count} for tag, count in tag_counts.most_common(10)],
            "reviews_by_month": [{"month": month, "count": by_month[month]} for month in sorted(by_month)],
            "reviewed_completed_executions": reviewed_completed,
        }

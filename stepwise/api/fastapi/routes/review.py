from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.schemas.reviews import ReviewCreate, ReviewRead, ReviewUpdate
from stepwise.services.reviews.review_service import ReviewService
from stepwise.utils.response import paginated_response, success_response

router = APIRouter(
    prefix="/reviews",
    tags=["Reviews"],
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: ReviewCreate,
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    """Write a review of a finished execution"""
    review = review_service.create_review(current_user, payload)
    return success_response(ReviewRead.model_validate(review), "Review created")


@router.get("")
async def list_reviews(
    rating: Optional[int] = Query(None, ge=1, le=5),
    execution_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    reviews, total = review_service.list_reviews(current_user, rating, execution_id, page, limit)
    return paginated_response([ReviewRead.model_validate(r) for r in reviews], page, limit, total)


@router.get("/analytics")
async def get_review_analytics(
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    return success_response(review_service.get_analytics(current_user))


@router.get("/{review_id}")
async def get_review(
    review_id: UUID,
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    return success_response(ReviewRead.model_validate(review_service.get_review(review_id, current_user)))


@router.put("/{review_id}")
async def update_review(
    review_id: UUID,
    payload: ReviewUpdate,
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    review = review_service.update_review(review_id, current_user, payload)
    return success_response(ReviewRead.model_validate(review), "Review updated")


@router.delete("/{review_id}")
async def delete_review(
    review_id: UUID,
    current_user: User = Depends(get_current_user),
    review_service: ReviewService = Depends(ReviewService),
):
    review_service.delete_review(review_id, current_user)
    return success_response(message="Review deleted")

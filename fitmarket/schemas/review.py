from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional

from fitmarket.models.review import ReviewTarget


class ReviewCreate(BaseModel):
    """Schema for posting a review. Posting again replaces the earlier one."""
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewResponse(BaseModel):
    id: int
    target_type: ReviewTarget
    target_id: int
    user_id: int
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewSummary(BaseModel):
    """Review list plus the target's recomputed rating."""
    target_type: ReviewTarget
    target_id: int
    average_rating: float
    review_count: int
    reviews: list[ReviewResponse]

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fitmarket.database import Base
from fitmarket.models.user import User


class ReviewTarget(str, enum.Enum):
    PRODUCT = "product"
    WORKOUT_PLAN = "workout_plan"


class Review(Base):
    """
    A user's rating of a product or workout plan.

    A user holds at most one review per target; posting again replaces it.
    """
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    target_type = Column(Enum(ReviewTarget), nullable=False)
    target_id = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    title = Column(String(100), nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('target_type', 'target_id', 'user_id', name='uq_review_per_user'),
        CheckConstraint('rating >= 1 AND rating <= 5', name='check_rating_range'),
    )

    user = relationship(User, lazy="joined")

    def __repr__(self):
        return f"<Review(target={self.target_type}:{self.target_id}, user_id={self.user_id}, rating={self.rating})>"

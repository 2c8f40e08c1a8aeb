from sqlalchemy import (
    Column, Integer, String, Float, Text, DateTime, ForeignKey, Enum, JSON, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fitmarket.database import Base
from fitmarket.models.product import CatalogStatus
from fitmarket.models.user import User


class PlanLevel(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class PlanCategory(str, enum.Enum):
    STRENGTH = "strength"
    CARDIO = "cardio"
    WEIGHT_LOSS = "weight_loss"
    FLEXIBILITY = "flexibility"
    HIIT = "hiit"
    GENERAL = "general"


class PlanVisibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    MEMBERS_ONLY = "members_only"


class WorkoutPlan(Base):
    """
    Workout plan sold by a trainer.

    ``active_members`` is a capacity counter bounded by ``max_members``; it is
    changed only by the join/leave operations of the membership service.
    """
    __tablename__ = "workout_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False)
    duration = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    level = Column(Enum(PlanLevel), default=PlanLevel.BEGINNER, nullable=False)
    category = Column(Enum(PlanCategory), default=PlanCategory.GENERAL, nullable=False)
    trainer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    max_members = Column(Integer, nullable=False, default=50)
    active_members = Column(Integer, nullable=False, default=0)
    status = Column(Enum(CatalogStatus), default=CatalogStatus.ACTIVE, nullable=False)
    visibility = Column(Enum(PlanVisibility), default=PlanVisibility.PUBLIC, nullable=False)
    features = Column(JSON, nullable=False, default=list)
    average_rating = Column(Float, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('price >= 0', name='check_plan_price_non_negative'),
        CheckConstraint('max_members >= 1', name='check_max_members_positive'),
        CheckConstraint(
            'active_members >= 0 AND active_members <= max_members',
            name='check_active_members_in_capacity',
        ),
    )

    trainer = relationship(User, lazy="joined")
    members = relationship("PlanMember", back_populates="plan", cascade="all, delete-orphan")

    @property
    def available_spots(self) -> int:
        return max(self.max_members - self.active_members, 0)

    def __repr__(self):
        return f"<WorkoutPlan(id={self.id}, name='{self.name}', members={self.active_members}/{self.max_members})>"


class PlanMember(Base):
    """
    A seat held by a user in a workout plan.

    Seats carried over at plan creation (``active_members`` > 0 on create)
    have no member row and cannot be released through leave.
    """
    __tablename__ = "plan_members"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("workout_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('plan_id', 'user_id', name='uq_plan_member'),
    )

    plan = relationship("WorkoutPlan", back_populates="members")

    def __repr__(self):
        return f"<PlanMember(plan_id={self.plan_id}, user_id={self.user_id})>"

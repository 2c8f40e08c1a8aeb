from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from typing import Optional, Literal

from fitmarket.models.product import CatalogStatus
from fitmarket.models.workout_plan import PlanLevel, PlanCategory, PlanVisibility


class WorkoutPlanBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    duration: str = Field(..., min_length=1, max_length=50, description='e.g. "12 weeks"')
    price: float = Field(..., ge=0)
    level: PlanLevel = PlanLevel.BEGINNER
    category: PlanCategory = PlanCategory.GENERAL
    max_members: int = Field(50, ge=1)
    status: CatalogStatus = CatalogStatus.ACTIVE
    visibility: PlanVisibility = PlanVisibility.PUBLIC
    features: list[str] = Field(default_factory=list)


class WorkoutPlanCreate(WorkoutPlanBase):
    """
    Schema for creating a plan.

    ``trainer_id`` is only honoured for admins; trainers always create plans
    for themselves.
    """
    trainer_id: Optional[int] = None
    active_members: int = Field(0, ge=0, description="Members carried over from another system")

    @model_validator(mode="after")
    def check_capacity(self):
        if self.active_members > self.max_members:
            raise ValueError("active_members cannot exceed max_members")
        return self


class WorkoutPlanUpdate(BaseModel):
    """Partial update. Membership counts are changed only by join/leave."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    duration: Optional[str] = Field(None, min_length=1, max_length=50)
    price: Optional[float] = Field(None, ge=0)
    level: Optional[PlanLevel] = None
    category: Optional[PlanCategory] = None
    max_members: Optional[int] = Field(None, ge=1)
    status: Optional[CatalogStatus] = None
    visibility: Optional[PlanVisibility] = None
    features: Optional[list[str]] = None


class WorkoutPlanResponse(WorkoutPlanBase):
    id: int
    trainer_id: int
    active_members: int
    available_spots: int
    average_rating: float
    review_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkoutPlanListResponse(BaseModel):
    items: list[WorkoutPlanResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class WorkoutPlanQuery(BaseModel):
    """Validated filter and sort options for plan listings."""
    search: Optional[str] = None
    level: Optional[PlanLevel] = None
    category: Optional[PlanCategory] = None
    status: Optional[CatalogStatus] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    sort: Literal["created_at", "name", "price", "average_rating", "active_members"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100)


class MembershipResponse(BaseModel):
    plan_id: int
    active_members: int
    max_members: int
    available_spots: int
    can_join: bool

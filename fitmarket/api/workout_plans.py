from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Annotated

from fitmarket.database import get_db
from fitmarket.models.review import ReviewTarget
from fitmarket.security import Principal, get_current_principal, require_staff
from fitmarket.services.catalog_service import CatalogService
from fitmarket.services.membership_service import MembershipService, can_join
from fitmarket.services.plan_service import WorkoutPlanService
from fitmarket.schemas.review import ReviewCreate, ReviewResponse, ReviewSummary
from fitmarket.schemas.workout_plan import (
    WorkoutPlanCreate,
    WorkoutPlanUpdate,
    WorkoutPlanResponse,
    WorkoutPlanListResponse,
    WorkoutPlanQuery,
    MembershipResponse,
)

router = APIRouter(prefix="/workout-plans", tags=["Workout Plans"])


def _membership(plan) -> MembershipResponse:
    return MembershipResponse(
        plan_id=plan.id,
        active_members=plan.active_members,
        max_members=plan.max_members,
        available_spots=plan.available_spots,
        can_join=can_join(plan)
    )


@router.get(
    "/",
    response_model=WorkoutPlanListResponse,
    summary="List workout plans",
    description="Paginated plan list with search, level/category/status/price filters and sorting."
)
def list_plans(
    options: Annotated[WorkoutPlanQuery, Query()],
    db: Session = Depends(get_db)
):
    plans, total, total_pages = WorkoutPlanService(db).get_all(options)

    return WorkoutPlanListResponse(
        items=[WorkoutPlanResponse.model_validate(p) for p in plans],
        total=total,
        page=options.page,
        page_size=options.page_size,
        total_pages=total_pages
    )


@router.post(
    "/",
    response_model=WorkoutPlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workout plan",
    description="Trainers create plans for themselves; admins may assign any trainer."
)
def create_plan(
    plan_data: WorkoutPlanCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff)
):
    return WorkoutPlanService(db).create(principal, plan_data)


@router.get(
    "/{plan_id}",
    response_model=WorkoutPlanResponse,
    summary="Get workout plan by ID"
)
def get_plan(
    plan_id: int,
    db: Session = Depends(get_db)
):
    return WorkoutPlanService(db).get(plan_id)


@router.put(
    "/{plan_id}",
    response_model=WorkoutPlanResponse,
    summary="Update a workout plan"
)
def update_plan(
    plan_id: int,
    plan_data: WorkoutPlanUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff)
):
    return WorkoutPlanService(db).update(plan_id, principal, plan_data)


@router.delete(
    "/{plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workout plan"
)
def delete_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff)
):
    WorkoutPlanService(db).delete(plan_id, principal)
    return None


@router.patch(
    "/{plan_id}/toggle-status",
    response_model=WorkoutPlanResponse,
    summary="Toggle plan status",
    description="Switch an active plan to inactive, or any other status to active."
)
def toggle_plan_status(
    plan_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff)
):
    return WorkoutPlanService(db).toggle_status(plan_id, principal)


@router.get(
    "/{plan_id}/membership",
    response_model=MembershipResponse,
    summary="Plan capacity"
)
def get_membership(
    plan_id: int,
    db: Session = Depends(get_db)
):
    return _membership(WorkoutPlanService(db).get(plan_id))


@router.post(
    "/{plan_id}/join",
    response_model=MembershipResponse,
    summary="Join a workout plan",
    description="Take a seat in an active, non-private plan. Fails with 400 when the plan is full or the caller already holds a seat."
)
def join_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    return _membership(MembershipService(db).join(plan_id, principal.id))


@router.post(
    "/{plan_id}/leave",
    response_model=MembershipResponse,
    summary="Leave a workout plan",
    description="Free the caller's seat. Leaving a plan the caller has not joined is a no-op."
)
def leave_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    return _membership(MembershipService(db).leave(plan_id, principal.id))


@router.post(
    "/{plan_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Review a workout plan"
)
def add_plan_review(
    plan_id: int,
    review: ReviewCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    return CatalogService(db).add_review(
        ReviewTarget.WORKOUT_PLAN,
        plan_id,
        principal.id,
        review.rating,
        review.title,
        review.comment
    )


@router.get(
    "/{plan_id}/reviews",
    response_model=ReviewSummary,
    summary="List workout plan reviews"
)
def list_plan_reviews(
    plan_id: int,
    db: Session = Depends(get_db)
):
    plan, reviews = CatalogService(db).list_reviews(ReviewTarget.WORKOUT_PLAN, plan_id)
    return ReviewSummary(
        target_type=ReviewTarget.WORKOUT_PLAN,
        target_id=plan_id,
        average_rating=plan.average_rating,
        review_count=plan.review_count,
        reviews=[ReviewResponse.model_validate(r) for r in reviews]
    )

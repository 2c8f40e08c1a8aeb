from sqlalchemy.orm import Session
from sqlalchemy import update, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from fitmarket.exceptions import NotFoundError, PlanFullError, StoreFailureError, ValidationError
from fitmarket.models.product import CatalogStatus
from fitmarket.models.workout_plan import WorkoutPlan, PlanMember, PlanVisibility

logger = logging.getLogger(__name__)


def can_join(plan: WorkoutPlan) -> bool:
    """A plan accepts members while active, not private and below capacity."""
    return (
        plan.status == CatalogStatus.ACTIVE
        and plan.visibility != PlanVisibility.PRIVATE
        and plan.active_members < plan.max_members
    )


class MembershipService:
    """
    Capacity bookkeeping for workout plans.

    ``active_members`` is moved with conditional UPDATEs so concurrent joins
    can never push it past ``max_members`` and concurrent leaves can never
    push it below zero. Each seat taken through join is recorded as a
    PlanMember row, and leave only frees a seat its caller holds.
    """

    def __init__(self, db: Session):
        self.db = db

    def join(self, plan_id: int, user_id: int) -> WorkoutPlan:
        """
        Take one seat in a plan for ``user_id``.

        Raises:
            NotFoundError: If the plan doesn't exist
            ValidationError: If the plan is not open for joining or the user already holds a seat
            PlanFullError: If the plan is at capacity
        """
        plan = self._get_plan(plan_id)
        if plan.status != CatalogStatus.ACTIVE or plan.visibility == PlanVisibility.PRIVATE:
            raise ValidationError(
                f"Workout plan {plan.name} is not open for joining",
                {"status": plan.status.value, "visibility": plan.visibility.value},
            )
        if self.is_member(plan_id, user_id):
            raise self._already_member(plan_id, user_id)

        result = self.db.execute(
            update(WorkoutPlan)
            .where(WorkoutPlan.id == plan_id, WorkoutPlan.active_members < WorkoutPlan.max_members)
            .values(active_members=WorkoutPlan.active_members + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            plan = self._get_plan(plan_id)
            raise PlanFullError(plan_id, plan.max_members, plan.active_members)

        self.db.add(PlanMember(plan_id=plan_id, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent join by the same user took the seat first
            self.db.rollback()
            raise self._already_member(plan_id, user_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure during join workout plan for plan #{plan_id}", exc_info=True)
            raise StoreFailureError("join workout plan")

        plan = self._get_plan(plan_id)
        logger.info(f"User #{user_id} joined plan #{plan_id} ({plan.active_members}/{plan.max_members})")
        return plan

    def leave(self, plan_id: int, user_id: int) -> WorkoutPlan:
        """
        Free the seat ``user_id`` holds in a plan.

        Leaving a plan the user holds no seat in, or a plan with no members,
        is a no-op.
        """
        self._get_plan(plan_id)
        removed = self.db.execute(
            delete(PlanMember).where(PlanMember.plan_id == plan_id, PlanMember.user_id == user_id)
        ).rowcount
        if removed:
            self.db.execute(
                update(WorkoutPlan)
                .where(WorkoutPlan.id == plan_id, WorkoutPlan.active_members > 0)
                .values(active_members=WorkoutPlan.active_members - 1)
                .execution_options(synchronize_session=False)
            )
        self._commit(plan_id, "leave workout plan")
        if removed:
            logger.info(f"User #{user_id} left plan #{plan_id}")
        return self._get_plan(plan_id)

    def is_member(self, plan_id: int, user_id: int) -> bool:
        return self.db.execute(
            select(PlanMember.id).where(PlanMember.plan_id == plan_id, PlanMember.user_id == user_id)
        ).first() is not None

    def _already_member(self, plan_id: int, user_id: int) -> ValidationError:
        return ValidationError(
            f"User {user_id} is already a member of workout plan {plan_id}",
            {"plan_id": plan_id, "user_id": user_id},
        )

    def _get_plan(self, plan_id: int) -> WorkoutPlan:
        plan = self.db.query(WorkoutPlan).filter(WorkoutPlan.id == plan_id).first()
        if not plan:
            raise NotFoundError("WorkoutPlan", plan_id)
        return plan

    def _commit(self, plan_id: int, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure during {operation} for plan #{plan_id}", exc_info=True)
            raise StoreFailureError(operation)

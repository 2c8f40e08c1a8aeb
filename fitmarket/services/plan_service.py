from sqlalchemy.orm import Session
from sqlalchemy import or_, asc, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Tuple
import math
import logging

from fitmarket.exceptions import ForbiddenError, NotFoundError, StoreFailureError, ValidationError
from fitmarket.models.product import CatalogStatus
from fitmarket.models.review import Review, ReviewTarget
from fitmarket.models.user import User, UserRole
from fitmarket.models.workout_plan import WorkoutPlan
from fitmarket.schemas.workout_plan import WorkoutPlanCreate, WorkoutPlanUpdate, WorkoutPlanQuery
from fitmarket.security import Principal

logger = logging.getLogger(__name__)


class WorkoutPlanService:
    """
    Service class for WorkoutPlan CRUD.

    Trainers manage their own plans; admins manage every plan. Membership
    counts are not writable here (see MembershipService).
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, principal: Principal, plan_data: WorkoutPlanCreate) -> WorkoutPlan:
        trainer_id = principal.id
        if principal.is_admin and plan_data.trainer_id is not None:
            trainer_id = plan_data.trainer_id

        trainer = self.db.get(User, trainer_id)
        if trainer is None:
            raise NotFoundError("User", trainer_id)
        if trainer.role not in (UserRole.TRAINER, UserRole.ADMIN):
            raise ValidationError(f"User {trainer_id} is not a trainer")

        plan = WorkoutPlan(trainer_id=trainer_id, **plan_data.model_dump(exclude={"trainer_id"}))
        self.db.add(plan)
        self._commit("create workout plan", conflict_message=f"Workout plan '{plan_data.name}' already exists")
        self.db.refresh(plan)
        logger.info(f"Workout plan #{plan.id} '{plan.name}' created for trainer #{trainer_id}")
        return plan

    def get(self, plan_id: int) -> WorkoutPlan:
        plan = self.db.query(WorkoutPlan).filter(WorkoutPlan.id == plan_id).first()
        if not plan:
            raise NotFoundError("WorkoutPlan", plan_id)
        return plan

    def get_all(self, options: WorkoutPlanQuery) -> Tuple[List[WorkoutPlan], int, int]:
        """
        Get a filtered, sorted, paginated list of plans.

        Returns:
            Tuple of (plans list, total count, total pages)
        """
        query = self.db.query(WorkoutPlan)

        if options.search:
            term = f"%{options.search}%"
            query = query.filter(or_(WorkoutPlan.name.ilike(term), WorkoutPlan.description.ilike(term)))
        if options.level:
            query = query.filter(WorkoutPlan.level == options.level)
        if options.category:
            query = query.filter(WorkoutPlan.category == options.category)
        if options.status:
            query = query.filter(WorkoutPlan.status == options.status)
        if options.min_price is not None:
            query = query.filter(WorkoutPlan.price >= options.min_price)
        if options.max_price is not None:
            query = query.filter(WorkoutPlan.price <= options.max_price)

        total = query.count()
        total_pages = math.ceil(total / options.page_size) if total > 0 else 1

        direction = asc if options.order == "asc" else desc
        offset = (options.page - 1) * options.page_size
        plans = (
            query.order_by(direction(getattr(WorkoutPlan, options.sort)), direction(WorkoutPlan.id))
            .offset(offset)
            .limit(options.page_size)
            .all()
        )
        return plans, total, total_pages

    def update(self, plan_id: int, principal: Principal, plan_data: WorkoutPlanUpdate) -> WorkoutPlan:
        plan = self._get_owned(plan_id, principal)

        update_data = plan_data.model_dump(exclude_unset=True)
        new_max = update_data.get("max_members")
        if new_max is not None and new_max < plan.active_members:
            raise ValidationError(
                "max_members cannot be lower than the current number of members",
                {"active_members": plan.active_members, "max_members": new_max},
            )

        for field, value in update_data.items():
            if value is not None:
                setattr(plan, field, value)

        self._commit("update workout plan", conflict_message=f"Workout plan '{plan.name}' already exists")
        self.db.refresh(plan)
        return plan

    def delete(self, plan_id: int, principal: Principal) -> None:
        plan = self._get_owned(plan_id, principal)
        self.db.query(Review).filter(
            Review.target_type == ReviewTarget.WORKOUT_PLAN, Review.target_id == plan_id
        ).delete(synchronize_session="fetch")
        self.db.delete(plan)
        self._commit("delete workout plan")
        logger.info(f"Workout plan #{plan_id} deleted")

    def toggle_status(self, plan_id: int, principal: Principal) -> WorkoutPlan:
        """Flip an active plan to inactive and anything else to active."""
        plan = self._get_owned(plan_id, principal)
        plan.status = CatalogStatus.INACTIVE if plan.status == CatalogStatus.ACTIVE else CatalogStatus.ACTIVE
        self._commit("toggle workout plan status")
        self.db.refresh(plan)
        return plan

    def _get_owned(self, plan_id: int, principal: Principal) -> WorkoutPlan:
        plan = self.get(plan_id)
        if not principal.can_access(plan.trainer_id):
            raise ForbiddenError("Trainers can only manage their own workout plans")
        return plan

    def _commit(self, operation: str, conflict_message: str = None) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if conflict_message:
                raise ValidationError(conflict_message)
            logger.error(f"Integrity error during {operation}: {e}")
            raise StoreFailureError(operation)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure during {operation}", exc_info=True)
            raise StoreFailureError(operation)

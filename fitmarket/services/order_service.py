from sqlalchemy.orm import Session
from sqlalchemy import select, update, func, asc, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from typing import Optional, List, Tuple
import math
import time
import logging

from fitmarket.config import get_settings
from fitmarket.exceptions import (
    EmptyOrderError,
    FitMarketError,
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ProductNotFoundError,
    StoreFailureError,
    ValidationError,
)
from fitmarket.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    STATUS_TRANSITIONS,
    DELETABLE_STATUSES,
)
from fitmarket.models.product import Product, CatalogStatus
from fitmarket.models.user import User
from fitmarket.schemas.order import OrderCreate, OrderUpdate, OrderQuery
from fitmarket.security import Principal
from fitmarket.services.catalog_service import CatalogService
from fitmarket.utils.dates import utcnow, as_utc

logger = logging.getLogger(__name__)

settings = get_settings()


class _OrderNumberTaken(Exception):
    pass


class OrderService:
    """
    Service class for the order lifecycle.

    ATOMIC CART RESERVATION:
    ========================
    An order and the stock reservations for all of its lines are written in
    one transaction:

    1. Validate every line against the catalog (existence, status, stock)
    2. Snapshot name/sku/image/category/price into the line items
    3. Insert the order (flush) with a fresh order number
    4. Reserve each line with a conditional UPDATE (stock >= quantity)
    5. Commit

    If any reservation loses a race, the whole transaction is rolled back:
    no order row and no partial stock decrement survive. The conditional
    UPDATE is what actually prevents overselling; the check in step 1 only
    gives a friendly early error.

    Order numbers are ``ORD-<epoch-millis>-<count+1 padded to 4>`` and the
    column is unique. A collision rolls back and retries the whole unit of
    work with a new number.
    """

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def create_order(self, user_id: int, order_data: OrderCreate) -> Order:
        """
        Create a new order with all-or-nothing stock reservation.

        Args:
            user_id: Owner of the order
            order_data: Cart items, addresses and payment method

        Returns:
            Created order with its user populated

        Raises:
            EmptyOrderError: If the cart has no items
            NotFoundError: If the user doesn't exist
            ProductNotFoundError: If a product doesn't exist
            ValidationError: If a product is not for sale
            InsufficientStockError: If a line exceeds available stock
            StoreFailureError: If the store fails or no unique number is found
        """
        if not order_data.items:
            raise EmptyOrderError()

        for attempt in range(1, settings.ORDER_NUMBER_ATTEMPTS + 1):
            try:
                return self._create_order_once(user_id, order_data)
            except _OrderNumberTaken:
                logger.warning(f"Order number collision (attempt {attempt}), retrying")

        raise StoreFailureError("generate a unique order number")

    def _create_order_once(self, user_id: int, order_data: OrderCreate) -> Order:
        try:
            if self.db.get(User, user_id) is None:
                raise NotFoundError("User", user_id)

            items = [self._snapshot_line(line.product_id, line.quantity) for line in order_data.items]

            shipping_info = order_data.shipping_info.model_dump()
            billing_info = (order_data.billing_info or order_data.shipping_info).model_dump()

            order = Order(
                order_number=self._generate_order_number(),
                user_id=user_id,
                items=items,
                shipping_info=shipping_info,
                billing_info=billing_info,
                payment_method=order_data.payment_method,
                status=OrderStatus.PENDING,
                tax=0,
                shipping_cost=0,
                discount=0,
                notes=order_data.notes,
                is_gift=order_data.is_gift,
                gift_message=order_data.gift_message,
            )
            order.recalculate_totals()

            self.db.add(order)
            try:
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                if self._order_number_exists(order.order_number):
                    raise _OrderNumberTaken()
                raise

            for item in items:
                self.catalog.reserve_stock(item.product_id, item.quantity)

            self.db.commit()

        except (FitMarketError, _OrderNumberTaken):
            self.db.rollback()
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure creating order for user #{user_id}", exc_info=True)
            raise StoreFailureError("create order")

        for item in items:
            self.catalog.invalidate_cache(item.product_id)

        logger.info(
            f"Order {order.order_number} (#{order.id}) created for user #{user_id}: "
            f"{len(items)} line(s), total {order.total_price}"
        )
        return order

    def _snapshot_line(self, product_id: int, quantity: int) -> OrderItem:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFoundError(product_id)
        if product.status != CatalogStatus.ACTIVE:
            raise ValidationError(
                f"Product {product.name} is not available for sale",
                {"product_id": product_id, "status": product.status.value},
            )
        if not product.is_in_stock(quantity):
            raise InsufficientStockError(product.id, product.stock, quantity, product.name)

        price = product.current_price()
        return OrderItem(
            product_id=product.id,
            name=product.name,
            sku=product.sku or "",
            image=product.primary_image or "",
            category=product.category.value,
            price=price,
            quantity=quantity,
            total_price=round(price * quantity, 2),
        )

    def _generate_order_number(self) -> str:
        count = self.db.query(func.count(Order.id)).scalar() or 0
        return f"ORD-{int(time.time() * 1000)}-{count + 1:04d}"

    def _order_number_exists(self, order_number: str) -> bool:
        return self.db.execute(
            select(Order.id).where(Order.order_number == order_number)
        ).first() is not None

    def get_order(self, order_id: int, principal: Optional[Principal] = None) -> Order:
        """
        Get an order by ID.

        Raises:
            NotFoundError: If the order doesn't exist
            ForbiddenError: If the principal is neither the owner nor an admin
        """
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order", order_id)
        if principal is not None and not principal.can_access(order.user_id):
            raise ForbiddenError("You can only access your own orders")
        return order

    def get_orders(self, principal: Principal, options: OrderQuery) -> Tuple[List[Order], int, int]:
        """
        Get paginated list of orders. Non-admins only see their own.

        Returns:
            Tuple of (orders list, total count, total pages)
        """
        query = self.db.query(Order)

        if not principal.is_admin:
            query = query.filter(Order.user_id == principal.id)
        if options.status:
            query = query.filter(Order.status == options.status)

        total = query.count()
        total_pages = math.ceil(total / options.page_size) if total > 0 else 1

        direction = asc if options.order == "asc" else desc
        offset = (options.page - 1) * options.page_size
        orders = (
            query.order_by(direction(getattr(Order, options.sort)), direction(Order.id))
            .offset(offset)
            .limit(options.page_size)
            .all()
        )
        return orders, total, total_pages

    def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        reason: Optional[str] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Move an order along the status transition graph.

        Cancelling through this path releases stock exactly like
        ``cancel_order``.

        Raises:
            InvalidTransitionError: If ``status`` is not reachable from the current status
            ValidationError: If a return is requested outside the return window
        """
        order = self.get_order(order_id)
        self._transition(order, status, reason)

        if tracking_number:
            order.tracking_number = tracking_number
        if tracking_url:
            order.tracking_url = tracking_url
        if notes:
            order.notes = notes

        self._commit(order, f"update status of order #{order_id}")
        logger.info(f"Order {order.order_number} moved to {status.value}")
        return order

    def cancel_order(self, order_id: int, principal: Principal, reason: Optional[str] = None) -> Order:
        """
        Cancel an order and restore its stock.

        Only pending, confirmed or processing orders can be cancelled, by
        their owner or an admin.
        """
        order = self.get_order(order_id, principal)
        if not order.can_be_cancelled:
            raise InvalidTransitionError(
                order.status.value,
                OrderStatus.CANCELLED.value,
                [s.value for s in order.allowed_transitions],
            )

        self._transition(order, OrderStatus.CANCELLED, reason)
        self._commit(order, f"cancel order #{order_id}")
        logger.info(f"Order {order.order_number} cancelled by user #{principal.id}")
        return order

    def update_order(self, order_id: int, order_data: OrderUpdate) -> Order:
        """Administrative update of tracking, payment and price adjustments."""
        order = self.get_order(order_id)

        update_data = order_data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            if value is not None:
                setattr(order, field, value)

        if order.discount > order.subtotal + order.tax + order.shipping_cost:
            self.db.rollback()
            raise ValidationError(
                "Discount cannot exceed the order amount",
                {"discount": order_data.discount},
            )

        order.apply_total()
        self._commit(order, f"update order #{order_id}")
        return order

    def delete_order(self, order_id: int, principal: Principal) -> None:
        """
        Delete a pending or cancelled order.

        A pending order still holds its stock reservation. It is claimed as
        cancelled with the same guarded UPDATE as a cancellation, then its
        stock is released before the row is removed.
        """
        order = self.get_order(order_id, principal)
        if order.status not in DELETABLE_STATUSES:
            raise ValidationError(
                "Only pending or cancelled orders can be deleted",
                {"status": order.status.value},
            )

        try:
            if order.status == OrderStatus.PENDING:
                self._claim(order, {"status": OrderStatus.CANCELLED, "cancelled_at": utcnow()})
                for item in order.items:
                    self.catalog.release_stock(item.product_id, item.quantity)
            self.db.delete(order)
            self.db.commit()
        except FitMarketError:
            self.db.rollback()
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure deleting order #{order_id}", exc_info=True)
            raise StoreFailureError("delete order")

        logger.info(f"Order #{order_id} deleted")

    def get_order_stats(
        self,
        user_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict:
        """
        Aggregate order count, revenue and status distribution.

        Returns a zeroed structure when no orders match.
        """
        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        # Compare in UTC; SQLite stores the UTC wall time without an offset
        if start is not None:
            filters.append(Order.created_at >= as_utc(start))
        if end is not None:
            filters.append(Order.created_at <= as_utc(end))

        rows = self.db.execute(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_price), 0))
            .where(*filters)
            .group_by(Order.status)
        ).all()

        status_counts = {status.value: count for status, count, _ in rows}
        total_orders = sum(status_counts.values())
        total_revenue = round(sum(float(revenue) for _, _, revenue in rows), 2)

        return {
            "total_orders": total_orders,
            "total_revenue": total_revenue,
            "average_order_value": round(total_revenue / total_orders, 2) if total_orders else 0,
            "status_counts": status_counts,
        }

    def _transition(self, order: Order, status: OrderStatus, reason: Optional[str] = None) -> None:
        allowed = STATUS_TRANSITIONS[order.status]
        if status not in allowed:
            raise InvalidTransitionError(order.status.value, status.value, [s.value for s in allowed])

        if status == OrderStatus.RETURNED and not order.can_be_returned(settings.RETURN_WINDOW_DAYS):
            raise ValidationError(
                f"Orders can only be returned within {settings.RETURN_WINDOW_DAYS} days of delivery",
                {"delivered_at": str(order.delivered_at)},
            )

        values = {"status": status}
        if status == OrderStatus.CANCELLED:
            values["cancelled_at"] = utcnow()
            if reason:
                values["cancellation_reason"] = reason
        elif status == OrderStatus.DELIVERED:
            values["delivered_at"] = utcnow()

        self._claim(order, values)

        if status == OrderStatus.CANCELLED:
            for item in order.items:
                self.catalog.release_stock(item.product_id, item.quantity)

    def _claim(self, order: Order, values: dict) -> None:
        """
        Move the order out of its loaded status with a guarded UPDATE.

        Only the request whose UPDATE still matches the loaded status may go
        on to release stock; a request that lost the race gets
        InvalidTransitionError against the status the winner wrote.
        """
        current = order.status
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            order_id = order.id
            self.db.rollback()
            fresh = self.get_order(order_id)
            logger.warning(
                f"Order #{order_id} changed from {current.value} to {fresh.status.value} concurrently"
            )
            raise InvalidTransitionError(
                fresh.status.value,
                values["status"].value,
                [s.value for s in fresh.allowed_transitions],
            )
        self.db.expire(order, list(values))

    def _commit(self, order: Order, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Store failure during {operation}", exc_info=True)
            raise StoreFailureError(operation)
        for item in order.items:
            self.catalog.invalidate_cache(item.product_id)

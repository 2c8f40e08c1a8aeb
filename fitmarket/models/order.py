from datetime import datetime, timedelta

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Enum, JSON, CheckConstraint, event
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fitmarket.database import Base
from fitmarket.models.user import User
from fitmarket.utils.dates import utcnow, as_utc


class OrderStatus(str, enum.Enum):
    """Enum for order status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    CASH = "cash"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Allowed status changes; terminal states map to an empty set.
STATUS_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (OrderStatus.RETURNED,),
    OrderStatus.CANCELLED: (),
    OrderStatus.RETURNED: (),
}

CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)
DELETABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CANCELLED)


class Order(Base):
    """
    Order model representing a checkout of one or more products.

    Line items are snapshots of the product at creation time. Address blocks
    are stored as JSON documents.

    Attributes:
        order_number: Human-readable unique number, ORD-<epoch-millis>-<seq>
        user_id: Owning user
        status: Current position in the status transition graph
        subtotal: Sum of line totals
        total_price: subtotal + tax + shipping_cost - discount
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shipping_info = Column(JSON, nullable=False)
    billing_info = Column(JSON, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_id = Column(String(255), nullable=True)
    subtotal = Column(Float, nullable=False, default=0)
    tax = Column(Float, nullable=False, default=0)
    shipping_cost = Column(Float, nullable=False, default=0)
    discount = Column(Float, nullable=False, default=0)
    total_price = Column(Float, nullable=False, default=0)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    tracking_number = Column(String(100), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    notes = Column(String(500), nullable=True)
    is_gift = Column(Boolean, default=False, nullable=False)
    gift_message = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('subtotal >= 0', name='check_subtotal_non_negative'),
        CheckConstraint('total_price >= 0', name='check_total_non_negative'),
    )

    user = relationship(User, lazy="joined")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def recalculate_totals(self) -> None:
        """Recompute subtotal from the line items, then the grand total."""
        self.subtotal = round(sum(item.total_price for item in self.items), 2)
        self.apply_total()

    def apply_total(self) -> None:
        self.total_price = round(
            (self.subtotal or 0) + (self.tax or 0) + (self.shipping_cost or 0) - (self.discount or 0),
            2,
        )

    @property
    def allowed_transitions(self) -> list[OrderStatus]:
        return list(STATUS_TRANSITIONS[self.status])

    @property
    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def can_be_returned(self, window_days: int = 30, now: datetime = None) -> bool:
        if self.status != OrderStatus.DELIVERED or self.delivered_at is None:
            return False
        now = now or utcnow()
        return now - as_utc(self.delivered_at) <= timedelta(days=window_days)

    @property
    def age_in_days(self) -> int:
        if self.created_at is None:
            return 0
        return (utcnow() - as_utc(self.created_at)).days

    def __repr__(self):
        return f"<Order(id={self.id}, order_number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """
    A line item: product reference plus the name/category/price snapshot
    taken when the order was placed.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=False, default="")
    image = Column(String(500), nullable=False, default="")
    category = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    total_price = Column(Float, nullable=False)

    __table_args__ = (
        CheckConstraint('quantity >= 1 AND quantity <= 100', name='check_quantity_range'),
        CheckConstraint('price >= 0', name='check_item_price_non_negative'),
    )

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, quantity={self.quantity})>"


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _enforce_total(mapper, connection, target: Order) -> None:
    target.apply_total()

from pydantic import BaseModel, Field, ConfigDict, EmailStr
from datetime import datetime
from typing import Optional, Literal

from fitmarket.models.order import OrderStatus, PaymentMethod, PaymentStatus


class AddressInfo(BaseModel):
    """Shipping or billing address block."""
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\+?[1-9]\d{0,15}$")
    address: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("US", min_length=1, max_length=50)


class CartItem(BaseModel):
    """One cart line submitted at checkout."""
    product_id: int = Field(..., description="ID of the product to purchase")
    quantity: int = Field(default=1, ge=1, le=100, description="Quantity to purchase")


class OrderCreate(BaseModel):
    """Schema for creating a new order from a cart."""
    items: list[CartItem] = Field(default_factory=list)
    shipping_info: AddressInfo
    billing_info: Optional[AddressInfo] = None
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=500)
    is_gift: bool = False
    gift_message: Optional[str] = Field(None, max_length=200)


class OrderUpdate(BaseModel):
    """Administrative order update. Totals are recomputed from these fields."""
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)
    estimated_delivery: Optional[datetime] = None
    payment_status: Optional[PaymentStatus] = None
    payment_id: Optional[str] = Field(None, max_length=255)
    tax: Optional[float] = Field(None, ge=0)
    shipping_cost: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    product_id: int
    name: str
    sku: str
    image: str
    category: str
    price: float
    quantity: int
    total_price: float

    model_config = ConfigDict(from_attributes=True)


class OrderUserSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    """Schema for order response."""
    id: int
    order_number: str
    user_id: int
    user: Optional[OrderUserSummary] = None
    items: list[OrderItemResponse]
    shipping_info: AddressInfo
    billing_info: AddressInfo
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    subtotal: float
    tax: float
    shipping_cost: float
    discount: float
    total_price: float
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    is_gift: bool
    gift_message: Optional[str] = None
    can_be_cancelled: bool
    allowed_transitions: list[OrderStatus]
    age_in_days: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    """Schema for paginated order list response."""
    items: list[OrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderQuery(BaseModel):
    """Validated filter and sort options for order listings."""
    status: Optional[OrderStatus] = None
    sort: Literal["created_at", "total_price", "status", "order_number"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)


class OrderStats(BaseModel):
    total_orders: int
    total_revenue: float
    average_order_value: float
    status_counts: dict[str, int]

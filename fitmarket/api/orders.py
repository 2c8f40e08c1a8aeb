from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Annotated, Optional

from fitmarket.database import get_db
from fitmarket.exceptions import ValidationError
from fitmarket.models.order import OrderStatus
from fitmarket.security import Principal, get_current_principal, require_admin
from fitmarket.services.order_service import OrderService
from fitmarket.schemas.order import (
    OrderCreate,
    OrderUpdate,
    OrderStatusUpdate,
    OrderCancel,
    OrderResponse,
    OrderListResponse,
    OrderQuery,
    OrderStats,
)
from fitmarket.tasks.order_tasks import send_order_confirmation, send_order_status_update

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new order (checkout)",
    description="""
    Turn a cart into an order.

    **Stock reservation:**
    Every line is reserved with a conditional UPDATE inside one transaction.
    If any line cannot be reserved the whole order is rolled back and the
    caller receives a 400 with the available and requested quantities.

    After a successful checkout, a background Celery task sends the order
    confirmation.
    """
)
def create_order(
    order_data: OrderCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """
    Create an order for the authenticated user.

    The order goes through these states:
    pending → confirmed → processing → shipped → delivered → returned,
    with cancellation possible up to (and including) processing.
    """
    service = OrderService(db)
    order = service.create_order(principal.id, order_data)

    send_order_confirmation.delay(order.id)

    return order


@router.get(
    "/",
    response_model=OrderListResponse,
    summary="List orders",
    description="Admins see every order; other users see their own."
)
def list_orders(
    options: Annotated[OrderQuery, Query()],
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Get paginated list of orders."""
    service = OrderService(db)
    orders, total, total_pages = service.get_orders(principal, options)

    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=options.page,
        page_size=options.page_size,
        total_pages=total_pages
    )


@router.get(
    "/stats",
    response_model=OrderStats,
    summary="Order statistics",
    description="Order count, revenue, average value and status distribution. Non-admins get their own figures."
)
def get_order_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    user_id = None if principal.is_admin else principal.id
    return OrderService(db).get_order_stats(user_id, start_date, end_date)


@router.get(
    "/status/{order_status}",
    response_model=OrderListResponse,
    summary="List orders by status"
)
def list_orders_by_status(
    order_status: OrderStatus,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    options = OrderQuery(status=order_status, page=page, page_size=page_size)
    orders, total, total_pages = OrderService(db).get_orders(principal, options)

    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Owners and admins only."
)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Get an order by ID."""
    return OrderService(db).get_order(order_id, principal)


@router.put(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Update an order",
    description="Tracking, payment and price adjustments (tax, shipping, discount). Admin only."
)
def update_order(
    order_id: int,
    order_data: OrderUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    return OrderService(db).update_order(order_id, order_data)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
    description="Move an order along the status transition graph. Admin only."
)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    order = OrderService(db).update_status(
        order_id,
        payload.status,
        reason=payload.reason,
        tracking_number=payload.tracking_number,
        tracking_url=payload.tracking_url,
        notes=payload.notes
    )

    send_order_status_update.delay(order.id, order.status.value)

    return order


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an order",
    description="Cancel a pending, confirmed or processing order and restore its stock."
)
def cancel_order(
    order_id: int,
    payload: Optional[OrderCancel] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    reason = payload.reason if payload else None
    order = OrderService(db).cancel_order(order_id, principal, reason)

    send_order_status_update.delay(order.id, order.status.value)

    return order


@router.delete(
    "/{order_id}",
    summary="Delete an order",
    description="Only pending or cancelled orders can be deleted."
)
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    OrderService(db).delete_order(order_id, principal)
    return {"success": True, "message": "Order deleted successfully"}

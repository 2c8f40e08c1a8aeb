import logging

from sqlalchemy.exc import SQLAlchemyError

from fitmarket.tasks.celery_app import celery_app
from fitmarket.database import SessionLocal
from fitmarket.models.order import Order

logger = logging.getLogger(__name__)


def _order_summary(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "total_price": order.total_price,
        "item_count": len(order.items),
        "email": order.shipping_info.get("email"),
    }


@celery_app.task(bind=True, name="send_order_confirmation")
def send_order_confirmation(self, order_id: int) -> dict:
    """
    Notify the customer that their order was received.

    Delivery goes to the shipping e-mail address. The order is re-read
    from the database so the notification reflects committed state.

    Args:
        order_id: ID of the newly created order

    Returns:
        Dictionary with the notification result
    """
    logger.info(f"Sending confirmation for Order #{order_id}")

    db = SessionLocal()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()

        if not order:
            logger.error(f"Order #{order_id} not found")
            return {"status": "failed", "error": "Order not found"}

        summary = _order_summary(order)
        logger.info(
            f"Confirmation for {summary['order_number']} sent to {summary['email']} "
            f"({summary['item_count']} item(s), total {summary['total_price']})"
        )
        return {"status": "sent", **summary}

    except SQLAlchemyError as e:
        logger.error(f"Error loading Order #{order_id}: {e}")
        raise self.retry(exc=e, countdown=60, max_retries=3)

    finally:
        db.close()


@celery_app.task(bind=True, name="send_order_status_update")
def send_order_status_update(self, order_id: int, status: str) -> dict:
    """
    Notify the customer that their order moved to a new status.

    Args:
        order_id: Order ID
        status: The status the order moved to

    Returns:
        Notification result
    """
    logger.info(f"Sending status update for Order #{order_id}: {status}")

    db = SessionLocal()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()

        if not order:
            logger.error(f"Order #{order_id} not found")
            return {"status": "failed", "error": "Order not found"}

        summary = _order_summary(order)
        if order.tracking_number:
            summary["tracking_number"] = order.tracking_number

        logger.info(f"Status update for {summary['order_number']} sent to {summary['email']}")
        return {"status": "sent", "notified_status": status, **summary}

    except SQLAlchemyError as e:
        logger.error(f"Error loading Order #{order_id}: {e}")
        raise self.retry(exc=e, countdown=60, max_retries=3)

    finally:
        db.close()

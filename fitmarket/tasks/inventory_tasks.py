import logging

from sqlalchemy.exc import SQLAlchemyError

from fitmarket.tasks.celery_app import celery_app
from fitmarket.database import SessionLocal
from fitmarket.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="report_low_stock")
def report_low_stock(self) -> dict:
    """Log every product at or below its low-stock threshold."""
    db = SessionLocal()
    try:
        products = CatalogService(db).get_low_stock()
        for product in products:
            logger.warning(
                f"Low stock: product #{product.id} '{product.name}' has {product.stock} "
                f"(threshold {product.low_stock_threshold})"
            )
        return {
            "count": len(products),
            "products": [{"id": p.id, "name": p.name, "stock": p.stock} for p in products],
        }

    except SQLAlchemyError as e:
        logger.error(f"Low-stock report failed: {e}")
        raise self.retry(exc=e, countdown=300, max_retries=3)

    finally:
        db.close()

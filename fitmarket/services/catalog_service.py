from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key
from sqlalchemy import select, update, func, or_, exists, case, asc, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from typing import Optional, List, Tuple
import math
import logging

from fitmarket.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ProductNotFoundError,
    StoreFailureError,
    ValidationError,
)
from fitmarket.models.order import Order, OrderItem, OrderStatus
from fitmarket.models.product import Product, CatalogStatus
from fitmarket.models.review import Review, ReviewTarget
from fitmarket.models.workout_plan import WorkoutPlan
from fitmarket.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductQuery,
    ProductResponse,
    StockLevel,
)
from fitmarket.utils.cache import cache_service
from fitmarket.utils.dates import utcnow

logger = logging.getLogger(__name__)

REVIEW_TARGETS = {
    ReviewTarget.PRODUCT: (Product, "Product"),
    ReviewTarget.WORKOUT_PLAN: (WorkoutPlan, "WorkoutPlan"),
}


class CatalogService:
    """
    Service class for the product catalog: CRUD, stock and reviews.

    STOCK BOOKKEEPING:
    ==================
    ``stock`` and ``sales`` are shared counters. They are only ever changed
    with a single conditional UPDATE, e.g.

        UPDATE products SET stock = stock - :q, sales = sales + :q
        WHERE id = :id AND stock >= :q

    so two concurrent requests can never drive stock below zero: the loser
    of the race matches zero rows and gets InsufficientStockError.

    ``reserve_stock`` and ``release_stock`` do not commit. The caller owns
    the transaction, which lets the order service reserve a whole cart (or
    nothing) in one unit of work.
    """

    CACHE_PREFIX = "product"

    def __init__(self, db: Session):
        self.db = db

    # -- products -------------------------------------------------------

    def create_product(self, product_data: ProductCreate) -> Product:
        """
        Create a new product.

        Raises:
            ValidationError: If the SKU is already taken
        """
        product = Product(**product_data.model_dump())
        self.db.add(product)
        self._commit("create product", conflict_message=f"SKU '{product_data.sku}' already exists")
        self.db.refresh(product)
        logger.info(f"Product #{product.id} '{product.name}' created with stock {product.stock}")
        return product

    def get_product(self, product_id: int) -> Product:
        """
        Get a product by ID.

        Raises:
            ProductNotFoundError: If the product doesn't exist
        """
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFoundError(product_id)
        return product

    def get_product_cached(self, product_id: int) -> dict:
        """
        Get product details from cache or database.

        Falls back to the database on a miss and caches the serialized
        product for future requests.
        """
        cached = cache_service.get(self.CACHE_PREFIX, str(product_id))
        if cached:
            return cached

        product = self.get_product(product_id)
        product_dict = ProductResponse.model_validate(product).model_dump(mode="json")
        cache_service.set(self.CACHE_PREFIX, str(product_id), product_dict)
        return product_dict

    def list_products(self, options: ProductQuery) -> Tuple[List[Product], int, int]:
        """
        Get a filtered, sorted, paginated list of products.

        Returns:
            Tuple of (products list, total count, total pages)
        """
        query = self.db.query(Product)

        if options.search:
            term = f"%{options.search}%"
            query = query.filter(
                or_(Product.name.ilike(term), Product.sku.ilike(term), Product.description.ilike(term))
            )
        if options.category:
            query = query.filter(Product.category == options.category)
        if options.status:
            query = query.filter(Product.status == options.status)
        if options.min_price is not None:
            query = query.filter(Product.price >= options.min_price)
        if options.max_price is not None:
            query = query.filter(Product.price <= options.max_price)

        total = query.count()
        total_pages = math.ceil(total / options.page_size) if total > 0 else 1

        direction = asc if options.order == "asc" else desc
        sort_column = getattr(Product, options.sort)
        offset = (options.page - 1) * options.page_size
        products = (
            query.order_by(direction(sort_column), direction(Product.id))
            .offset(offset)
            .limit(options.page_size)
            .all()
        )
        return products, total, total_pages

    def update_product(self, product_id: int, product_data: ProductUpdate) -> Product:
        """Update an existing product. Only provided fields are changed."""
        product = self.get_product(product_id)

        update_data = product_data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            setattr(product, field, value)

        if product.sale_start_date and product.sale_end_date and product.sale_end_date < product.sale_start_date:
            self.db.rollback()
            raise ValidationError("sale_end_date must not be before sale_start_date")

        self._commit("update product", conflict_message=f"SKU '{product.sku}' already exists")
        self.db.refresh(product)
        self.invalidate_cache(product_id)
        return product

    def delete_product(self, product_id: int) -> str:
        """
        Delete a product, or archive it if any order references it.

        A hard delete removes the product's reviews in the same transaction.

        Returns:
            "deleted" or "archived"
        """
        product = self.get_product(product_id)

        referenced = self.db.execute(
            select(exists().where(OrderItem.product_id == product_id))
        ).scalar()

        if referenced:
            product.status = CatalogStatus.ARCHIVED
            outcome = "archived"
        else:
            self.db.query(Review).filter(
                Review.target_type == ReviewTarget.PRODUCT, Review.target_id == product_id
            ).delete(synchronize_session="fetch")
            self.db.delete(product)
            outcome = "deleted"

        self._commit("delete product")
        self.invalidate_cache(product_id)
        logger.info(f"Product #{product_id} {outcome}")
        return outcome

    def get_low_stock(self) -> List[Product]:
        """Products at or below their low-stock threshold, lowest stock first."""
        return (
            self.db.query(Product)
            .filter(Product.stock <= Product.low_stock_threshold)
            .filter(Product.status != CatalogStatus.ARCHIVED)
            .order_by(Product.stock.asc(), Product.id.asc())
            .all()
        )

    def get_featured(self, limit: int = 10) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.is_featured.is_(True), Product.status == CatalogStatus.ACTIVE)
            .order_by(Product.sales.desc(), Product.id.desc())
            .limit(limit)
            .all()
        )

    def get_on_sale(self, now: Optional[datetime] = None, limit: int = 50) -> List[Product]:
        """
        Active products with a sale price whose sale window contains ``now``.

        Both bounds must hold: a sale that has not started yet or has already
        ended is excluded. A missing bound is open-ended.
        """
        now = now or utcnow()
        return (
            self.db.query(Product)
            .filter(
                Product.sale_price.isnot(None),
                Product.status == CatalogStatus.ACTIVE,
                or_(Product.sale_start_date.is_(None), Product.sale_start_date <= now),
                or_(Product.sale_end_date.is_(None), Product.sale_end_date >= now),
            )
            .order_by(Product.id.desc())
            .limit(limit)
            .all()
        )

    def get_analytics(self, product_id: int) -> dict:
        """Sales figures over non-cancelled orders plus rating stats."""
        product = self.get_product(product_id)

        units_sold, revenue, order_count = self.db.execute(
            select(
                func.coalesce(func.sum(OrderItem.quantity), 0),
                func.coalesce(func.sum(OrderItem.total_price), 0),
                func.count(func.distinct(OrderItem.order_id)),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.product_id == product_id)
            .where(Order.status != OrderStatus.CANCELLED)
        ).one()

        return {
            "product_id": product.id,
            "name": product.name,
            "stock": product.stock,
            "sales": product.sales,
            "units_sold": int(units_sold),
            "revenue": round(float(revenue), 2),
            "order_count": int(order_count),
            "average_rating": product.average_rating,
            "review_count": product.review_count,
            "is_low_stock": product.is_low_stock,
        }

    # -- stock ----------------------------------------------------------

    def get_availability(self, product_id: int, quantity: int) -> bool:
        """
        Check whether ``quantity`` units can currently be sold.

        Raises:
            ProductNotFoundError: If the product doesn't exist
        """
        return self.get_product(product_id).is_in_stock(quantity)

    def is_in_stock(self, product_id: int, quantity: int = 1) -> bool:
        return self.get_availability(product_id, quantity)

    def reserve_stock(self, product_id: int, quantity: int) -> None:
        """
        Atomically take ``quantity`` units out of stock and count them as sold.

        Does not commit.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            InsufficientStockError: If stock < quantity at execution time
        """
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, sales=Product.sales + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = self._current_stock(product_id)
            raise InsufficientStockError(product_id, available, quantity)
        self._expire_counters(product_id)

    def release_stock(self, product_id: int, quantity: int) -> None:
        """
        Put ``quantity`` units back into stock and take them off the sales
        counter (floored at zero). Does not commit.
        """
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock=Product.stock + quantity,
                sales=case((Product.sales >= quantity, Product.sales - quantity), else_=0),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ProductNotFoundError(product_id)
        self._expire_counters(product_id)

    def adjust_stock(self, product_id: int, delta: int) -> Product:
        """
        Administrative restock or write-off by a relative amount.

        Raises:
            InsufficientStockError: If the adjustment would make stock negative
        """
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock + delta >= 0)
            .values(stock=Product.stock + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = self._current_stock(product_id)
            self.db.rollback()
            raise InsufficientStockError(product_id, available, -delta)

        self._commit("adjust stock")
        self.invalidate_cache(product_id)
        product = self.get_product(product_id)
        logger.info(f"Stock for product #{product_id} adjusted by {delta:+d} to {product.stock}")
        return product

    def bulk_set_stock(self, levels: List[StockLevel]) -> dict:
        """
        Set absolute stock levels after an inventory count.

        All rows are written in one transaction; an unknown product ID
        aborts the whole batch.
        """
        ids = [level.id for level in levels]
        current = dict(
            self.db.execute(select(Product.id, Product.stock).where(Product.id.in_(ids))).all()
        )
        missing = [pid for pid in ids if pid not in current]
        if missing:
            raise ProductNotFoundError(missing[0])

        modified = 0
        for level in levels:
            self.db.execute(
                update(Product)
                .where(Product.id == level.id)
                .values(stock=level.stock)
                .execution_options(synchronize_session=False)
            )
            if current[level.id] != level.stock:
                modified += 1
            current[level.id] = level.stock
            self._expire_counters(level.id)

        self._commit("update stock levels")
        for pid in ids:
            self.invalidate_cache(pid)
        logger.info(f"Bulk stock update: {len(levels)} matched, {modified} modified")
        return {"matched": len(levels), "modified": modified}

    # -- reviews --------------------------------------------------------

    def add_review(
        self,
        target_type: ReviewTarget,
        target_id: int,
        user_id: int,
        rating: int,
        title: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Review:
        """
        Add a review, replacing any earlier review by the same user, and
        recompute the target's average rating and review count.
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", {"rating": rating})

        target = self._get_review_target(target_type, target_id)

        self.db.query(Review).filter(
            Review.target_type == target_type,
            Review.target_id == target_id,
            Review.user_id == user_id,
        ).delete(synchronize_session="fetch")
        # Flush the delete first so the unique (target, user) row is free
        self.db.flush()

        review = Review(
            target_type=target_type,
            target_id=target_id,
            user_id=user_id,
            rating=rating,
            title=title,
            comment=comment,
        )
        self.db.add(review)
        self.db.flush()

        average, count = self.db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(
                Review.target_type == target_type, Review.target_id == target_id
            )
        ).one()
        target.average_rating = round(float(average or 0), 2)
        target.review_count = int(count)

        self._commit("add review")
        self.db.refresh(review)
        if target_type == ReviewTarget.PRODUCT:
            self.invalidate_cache(target_id)
        logger.info(f"User #{user_id} rated {target_type.value} #{target_id} with {rating}")
        return review

    def list_reviews(self, target_type: ReviewTarget, target_id: int) -> Tuple[object, List[Review]]:
        target = self._get_review_target(target_type, target_id)
        reviews = (
            self.db.query(Review)
            .filter(Review.target_type == target_type, Review.target_id == target_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
            .all()
        )
        return target, reviews

    # -- helpers --------------------------------------------------------

    def _get_review_target(self, target_type: ReviewTarget, target_id: int):
        model, label = REVIEW_TARGETS[target_type]
        target = self.db.get(model, target_id)
        if target is None:
            if model is Product:
                raise ProductNotFoundError(target_id)
            raise NotFoundError(label, target_id)
        return target

    def _current_stock(self, product_id: int) -> int:
        stock = self.db.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise ProductNotFoundError(product_id)
        return stock

    def _expire_counters(self, product_id: int) -> None:
        """Drop stale in-session counter values after a SQL-side update."""
        product = self.db.identity_map.get(identity_key(Product, product_id))
        if product is not None:
            self.db.expire(product, ["stock", "sales"])

    def _commit(self, operation: str, conflict_message: Optional[str] = None) -> None:
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

    def invalidate_cache(self, product_id: int) -> None:
        """Invalidate cache for a product."""
        cache_service.delete(self.CACHE_PREFIX, str(product_id))

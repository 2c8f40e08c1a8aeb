from sqlalchemy import (
    Column, Integer, String, Float, Text, Boolean, DateTime, Enum, JSON, CheckConstraint
)
from sqlalchemy.sql import func
from datetime import datetime
import enum

from fitmarket.database import Base
from fitmarket.utils.dates import utcnow, as_utc


class ProductCategory(str, enum.Enum):
    """Enum for product categories."""
    PROTEIN = "protein"
    SUPPLEMENTS = "supplements"
    EQUIPMENT = "equipment"
    APPAREL = "apparel"
    ACCESSORIES = "accessories"


class CatalogStatus(str, enum.Enum):
    """Publication status shared by products and workout plans."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    ARCHIVED = "archived"


class Product(Base):
    """
    Product model representing items available for sale.

    Attributes:
        id: Unique identifier for the product
        sku: Optional human-friendly product code
        name: Product name
        category: Product category
        price: Regular unit price (non-negative)
        sale_price: Discounted unit price while a sale is running
        sale_start_date / sale_end_date: Optional sale window bounds
        stock: Available quantity (must be non-negative)
        low_stock_threshold: Stock level at or below which the product is flagged
        sales: Cumulative units sold (net of cancellations)
        status: Publication status; referenced products are archived, not deleted
        average_rating / review_count: Derived from the product's reviews
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, nullable=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    category = Column(Enum(ProductCategory), nullable=False, index=True)
    price = Column(Float, nullable=False)
    sale_price = Column(Float, nullable=True)
    sale_start_date = Column(DateTime(timezone=True), nullable=True)
    sale_end_date = Column(DateTime(timezone=True), nullable=True)
    is_featured = Column(Boolean, default=False, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    sales = Column(Integer, nullable=False, default=0)
    status = Column(Enum(CatalogStatus), default=CatalogStatus.ACTIVE, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    average_rating = Column(Float, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Database-level constraints to ensure data integrity
    __table_args__ = (
        CheckConstraint('price >= 0', name='check_price_non_negative'),
        CheckConstraint('stock >= 0', name='check_stock_non_negative'),
        CheckConstraint('sales >= 0', name='check_sales_non_negative'),
        CheckConstraint('low_stock_threshold >= 0', name='check_threshold_non_negative'),
    )

    @property
    def primary_image(self):
        return self.images[0] if self.images else None

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.low_stock_threshold

    def is_in_stock(self, quantity: int = 1) -> bool:
        return self.stock >= quantity

    def is_on_sale(self, now: datetime = None) -> bool:
        if self.sale_price is None:
            return False
        now = now or utcnow()
        if self.sale_start_date and now < as_utc(self.sale_start_date):
            return False
        if self.sale_end_date and now > as_utc(self.sale_end_date):
            return False
        return True

    def current_price(self, now: datetime = None) -> float:
        """Unit price a buyer pays right now."""
        return self.sale_price if self.is_on_sale(now) else self.price

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"

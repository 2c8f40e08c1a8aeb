from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from typing import Optional, Literal

from fitmarket.models.product import ProductCategory, CatalogStatus


class ProductBase(BaseModel):
    """Base schema for Product with common attributes."""
    name: str = Field(..., min_length=1, max_length=255, description="Product name")
    sku: Optional[str] = Field(None, max_length=64, description="Optional product code")
    description: Optional[str] = Field(None, description="Product description")
    category: ProductCategory = Field(..., description="Product category")
    price: float = Field(..., ge=0, description="Product price (must be non-negative)")
    sale_price: Optional[float] = Field(None, ge=0, description="Sale price while a sale runs")
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    is_featured: bool = False
    low_stock_threshold: int = Field(10, ge=0, description="Low-stock warning level")
    status: CatalogStatus = CatalogStatus.ACTIVE
    images: list[str] = Field(default_factory=list)


class ProductCreate(ProductBase):
    """Schema for creating a new product."""
    stock: int = Field(0, ge=0, description="Initial stock (must be non-negative)")

    @model_validator(mode="after")
    def check_sale_window(self):
        if self.sale_start_date and self.sale_end_date and self.sale_end_date < self.sale_start_date:
            raise ValueError("sale_end_date must not be before sale_start_date")
        return self


class ProductUpdate(BaseModel):
    """
    Schema for updating an existing product. All fields are optional.

    Stock is not updatable here; use the stock adjustment endpoints.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    is_featured: Optional[bool] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    status: Optional[CatalogStatus] = None
    images: Optional[list[str]] = None


class ProductResponse(ProductBase):
    """Schema for product response including all fields."""
    id: int
    stock: int
    sales: int
    average_rating: float
    review_count: int
    is_low_stock: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    """Schema for paginated product list response."""
    items: list[ProductResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProductQuery(BaseModel):
    """Validated filter and sort options for product listings."""
    search: Optional[str] = None
    category: Optional[ProductCategory] = None
    status: Optional[CatalogStatus] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    sort: Literal["created_at", "name", "price", "stock", "sales", "average_rating"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)


class StockAdjustment(BaseModel):
    """Relative stock change, e.g. +24 after a delivery or -1 for a damaged unit."""
    delta: int = Field(..., description="Units to add (positive) or remove (negative)")


class StockLevel(BaseModel):
    id: int
    stock: int = Field(..., ge=0)


class BulkStockUpdate(BaseModel):
    items: list[StockLevel] = Field(..., min_length=1)


class BulkStockResult(BaseModel):
    matched: int
    modified: int


class AvailabilityResponse(BaseModel):
    product_id: int
    quantity: int
    available: bool
    stock: int


class ProductAnalytics(BaseModel):
    product_id: int
    name: str
    stock: int
    sales: int
    units_sold: int
    revenue: float
    order_count: int
    average_rating: float
    review_count: int
    is_low_stock: bool

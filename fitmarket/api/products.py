from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Annotated

from fitmarket.database import get_db
from fitmarket.models.review import ReviewTarget
from fitmarket.security import Principal, get_current_principal, require_admin
from fitmarket.services.catalog_service import CatalogService
from fitmarket.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductListResponse,
    ProductQuery,
    StockAdjustment,
    BulkStockUpdate,
    BulkStockResult,
    AvailabilityResponse,
    ProductAnalytics,
)
from fitmarket.schemas.review import ReviewCreate, ReviewResponse, ReviewSummary

router = APIRouter(prefix="/products", tags=["Products"])


@router.get(
    "/",
    response_model=ProductListResponse,
    summary="List products",
    description="Paginated product list with search, category/status/price filters and sorting."
)
def list_products(
    options: Annotated[ProductQuery, Query()],
    db: Session = Depends(get_db)
):
    """Get paginated list of products."""
    service = CatalogService(db)
    products, total, total_pages = service.list_products(options)

    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=options.page,
        page_size=options.page_size,
        total_pages=total_pages
    )


@router.get(
    "/featured",
    response_model=list[ProductResponse],
    summary="Featured products"
)
def get_featured_products(
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db)
):
    return CatalogService(db).get_featured(limit)


@router.get(
    "/on-sale",
    response_model=list[ProductResponse],
    summary="Products on sale",
    description="Active products with a sale price whose sale window includes the current time."
)
def get_products_on_sale(db: Session = Depends(get_db)):
    return CatalogService(db).get_on_sale()


@router.get(
    "/low-stock",
    response_model=list[ProductResponse],
    summary="Low-stock products",
    description="Products at or below their low-stock threshold, lowest stock first. Admin only."
)
def get_low_stock(
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    return CatalogService(db).get_low_stock()


@router.put(
    "/bulk/stock",
    response_model=BulkStockResult,
    summary="Bulk stock update",
    description="Set absolute stock levels after an inventory count. All-or-nothing. Admin only."
)
def bulk_update_stock(
    payload: BulkStockUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    return CatalogService(db).bulk_set_stock(payload.items)


@router.post(
    "/",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new product",
    description="Create a new product with its initial stock. Admin only."
)
def create_product(
    product_data: ProductCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    """
    Create a new product.

    - **name**: Product name (required)
    - **category**: One of protein, supplements, equipment, apparel, accessories
    - **price**: Product price, must be non-negative (required)
    - **stock**: Initial stock quantity, must be non-negative
    """
    return CatalogService(db).create_product(product_data)


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Get product by ID",
    description="Get detailed information about a specific product. Results are cached in Redis."
)
def get_product(
    product_id: int,
    db: Session = Depends(get_db)
):
    """
    Get a product by ID.

    Cache TTL is 5 minutes by default; every stock or catalog change
    invalidates the entry.
    """
    return CatalogService(db).get_product_cached(product_id)


@router.get(
    "/{product_id}/availability",
    response_model=AvailabilityResponse,
    summary="Check availability"
)
def get_availability(
    product_id: int,
    quantity: int = Query(1, ge=1, le=100),
    db: Session = Depends(get_db)
):
    service = CatalogService(db)
    available = service.get_availability(product_id, quantity)
    product = service.get_product(product_id)
    return AvailabilityResponse(
        product_id=product_id,
        quantity=quantity,
        available=available,
        stock=product.stock
    )


@router.put(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Update a product",
    description="Update product details. Only provided fields will be updated. Admin only."
)
def update_product(
    product_id: int,
    product_data: ProductUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    """
    Update a product.

    Partial updates are supported. Stock is changed through
    `PATCH /products/{id}/stock` instead.
    """
    return CatalogService(db).update_product(product_id, product_data)


@router.patch(
    "/{product_id}/stock",
    response_model=ProductResponse,
    summary="Adjust stock",
    description="Restock (positive delta) or write off (negative delta). Stock never goes below zero. Admin only."
)
def adjust_stock(
    product_id: int,
    adjustment: StockAdjustment,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    return CatalogService(db).adjust_stock(product_id, adjustment.delta)


@router.delete(
    "/{product_id}",
    summary="Delete a product",
    description="Delete a product, or archive it when orders reference it. Admin only."
)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin)
):
    outcome = CatalogService(db).delete_product(product_id)
    return {"id": product_id, "outcome": outcome}


@router.get(
    "/{product_id}/analytics",
    response_model=ProductAnalytics,
    summary="Product analytics",
    description="Units sold, revenue and order count over non-cancelled orders."
)
def get_product_analytics(
    product_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal)
):
    return CatalogService(db).get_analytics(product_id)


@router.post(
    "/{product_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Review a product",
    description="Add a review. A second review by the same user replaces the first."
)
def add_product_review(
    product_id: int,
    review: ReviewCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    return CatalogService(db).add_review(
        ReviewTarget.PRODUCT,
        product_id,
        principal.id,
        review.rating,
        review.title,
        review.comment
    )


@router.get(
    "/{product_id}/reviews",
    response_model=ReviewSummary,
    summary="List product reviews"
)
def list_product_reviews(
    product_id: int,
    db: Session = Depends(get_db)
):
    product, reviews = CatalogService(db).list_reviews(ReviewTarget.PRODUCT, product_id)
    return ReviewSummary(
        target_type=ReviewTarget.PRODUCT,
        target_id=product_id,
        average_rating=product.average_rating,
        review_count=product.review_count,
        reviews=[ReviewResponse.model_validate(r) for r in reviews]
    )

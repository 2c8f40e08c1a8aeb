from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from fitmarket.config import get_settings
from fitmarket.database import engine, Base
from fitmarket.exceptions import (
    FitMarketError,
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    InvalidTransitionError,
    ForbiddenError,
    PlanFullError,
    StoreFailureError,
)
from fitmarket.api import products, orders, workout_plans, health

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    logger.info("Starting up application...")

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

    yield

    logger.info("Shutting down application...")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Backend for a fitness store and workout-plan marketplace.

    - **Catalog**: products with stock, sales windows and reviews
    - **Orders**: checkout with all-or-nothing stock reservation and a fixed status graph
    - **Workout plans**: trainer-managed plans with capacity-limited membership
    - **Background tasks**: Celery workers for order notifications and low-stock reports
    - **Caching**: Redis-backed product detail cache

    ## Order status graph

    `pending → confirmed → processing → shipped → delivered → returned`;
    pending, confirmed and processing orders can also be cancelled, which
    restores their stock.
    """,
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Map exception types to HTTP status codes (most specific first)
ERROR_STATUS_CODES: list[tuple[type, int]] = [
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (InsufficientStockError, 400),
    (InvalidTransitionError, 400),
    (PlanFullError, 400),
    (ValidationError, 400),
    (StoreFailureError, 500),
]


def status_code_for(exc: FitMarketError) -> int:
    for exc_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return 500


@app.exception_handler(FitMarketError)
async def fitmarket_error_handler(request: Request, exc: FitMarketError) -> JSONResponse:
    """Map FitMarketError subclasses to JSON error responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "kind": exc.kind,
            "message": exc.message,
            "details": exc.details,
        },
    )


# Include API routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(products.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(workout_plans.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/api/v1/health/"
    }

"""FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .domain_errors import DomainError
from .problem_details import (
    handle_domain_error,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from .routers import dispatch, erection, invoices, stock, work_orders
from .schema_bootstrap import bootstrap_schema

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.MIGRATE_ON_STARTUP:
        bootstrap_schema()
    yield


# Create app
app = FastAPI(
    title="Precast ERP",
    version="1.0.0",
    description="Backend API for precast concrete stock, dispatch, erection and billing",
    lifespan=lifespan,
)

# Production safety checks.
if settings.ENV.lower() == "production" and settings.DEBUG:
    raise RuntimeError("DEBUG must be false in production.")
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")

# CORS
cors_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

# Error envelope
app.add_exception_handler(DomainError, handle_domain_error)
app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(RequestValidationError, handle_validation_error)
app.add_exception_handler(Exception, handle_unexpected_error)

# Include routers
app.include_router(stock.router, prefix="/api/v1")
app.include_router(dispatch.router, prefix="/api/v1")
app.include_router(erection.router, prefix="/api/v1")
app.include_router(work_orders.router, prefix="/api/v1")
app.include_router(invoices.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "env": settings.ENV,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Precast ERP API",
        "version": "1.0.0",
        "docs": "/docs"
    }

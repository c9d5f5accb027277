"""
FastAPI application for the storefront checkout service.

Everything under /api/v1 requires the API key for its resource. Errors from
any layer are rendered in one body shape:

    {"timestamp", "status", "error", "message", "path", "details"?}
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from core.exceptions import StorefrontError
from database.connection import close_db, init_db
from monitoring.logging import setup_logging
from monitoring.metrics import metrics

from .routes import (
    audit_router,
    customer_router,
    monitoring_router,
    order_router,
    payment_router,
    product_router,
    tokenization_router,
)
from .security import verify_api_key

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

REQUEST_ID_HEADER = "X-Request-ID"
API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup and release the pool on shutdown."""
    logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)
    await init_db()
    logger.info("database_initialized")

    try:
        yield
    finally:
        await close_db()
        logger.info("application_shutdown")


app = FastAPI(
    title="Storefront Checkout",
    description=(
        "E-commerce backend: customers, catalog, carts, card tokenization and "
        "checkout with retrying simulated payment authorization."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _route_template(request: Request) -> str:
    # Unmatched paths share one label to keep metric cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """
    Bind a request id to the log context and time the request.

    A caller-supplied X-Request-ID is reused so traces line up across services.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    started = time.perf_counter()
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        duration = time.perf_counter() - started
        metrics.record_http_request(
            request.method, _route_template(request), status_code, duration
        )
        logger.info("request_completed", status_code=status_code, duration_seconds=duration)
        structlog.contextvars.clear_contextvars()


def error_body(
    status_code: int,
    error: str,
    message: str,
    path: str,
    details: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
        "error": error,
        "message": message,
        "path": path,
    }
    if details is not None:
        body["details"] = details
    return body


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, error, message, request.url.path, details),
        headers=headers,
    )


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Domain errors carry their own status code and title."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("storefront_error", error_type=type(exc).__name__, error=str(exc))
    return _error_response(request, exc.status_code, exc.title, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Invalid input is a 400 with one message per offending field."""
    details: Dict[str, str] = {}
    for error in exc.errors():
        field = ".".join(
            str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")
        )
        details[field or "request"] = error.get("msg", "Invalid value")

    logger.warning("request_validation_failed", details=details)
    return _error_response(
        request, status.HTTP_400_BAD_REQUEST, "Validation Failed", "Invalid request data", details
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    try:
        error = HTTPStatus(exc.status_code).phrase
    except ValueError:
        error = "Error"
    return _error_response(
        request, exc.status_code, error, str(exc.detail), headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Internal details stay in the log
    logger.error("unhandled_exception", error_type=type(exc).__name__, exc_info=exc)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An unexpected error occurred",
    )


api_v1 = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])
for router in (
    customer_router,
    product_router,
    order_router,
    payment_router,
    tokenization_router,
    audit_router,
):
    api_v1.include_router(router)

app.include_router(api_v1)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> Dict[str, Any]:
    return {
        "service": settings.app_name,
        "version": API_VERSION,
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def main() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

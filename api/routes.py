"""
API routes for the storefront.

Domain errors raised by the services propagate to the StorefrontError
handler in api.main, which renders them with their HTTP status.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from core.audit import AuditPage, AuditRecorder
from core.cart import CartService
from core.catalog import ProductService
from core.checkout import CheckoutService
from core.customers import CustomerService
from core.projections import audit_log_to_dict
from core.tokenization import TokenizationService
from database.connection import get_db
from database.models import EventStatus, EventType
from monitoring.health import HealthCheck

from .dependencies import (
    get_audit_recorder,
    get_cart_service,
    get_checkout_service,
    get_customer_service,
    get_product_service,
    get_tokenization_service,
)
from .schemas import (
    AddToCartRequest,
    AuditLogResponse,
    CheckoutRequest,
    CheckoutResponse,
    CustomerRegistrationRequest,
    CustomerResponse,
    HealthCheckResponse,
    OrderResponse,
    Page,
    ProductRequest,
    ProductResponse,
    TokenizationRequest,
    TokenizationResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
customer_router = APIRouter(prefix="/customers", tags=["customers"])
product_router = APIRouter(prefix="/products", tags=["products"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
tokenization_router = APIRouter(prefix="/tokenization", tags=["tokenization"])
audit_router = APIRouter(prefix="/audit", tags=["audit"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# Customers


@customer_router.post(
    "",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer",
)
async def register_customer(
    body: CustomerRegistrationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: CustomerService = Depends(get_customer_service),
) -> Dict[str, Any]:
    """Register a customer with a unique email and phone number."""
    logger.info("api_register_customer_request", email=body.email)
    return await service.register_customer(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        phone_number=body.phone_number,
        address=body.address,
        city=body.city,
        state=body.state,
        zip_code=body.zip_code,
        country=body.country,
        db=db,
        source_ip=client_ip(request),
    )


# Products


@product_router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
)
async def create_product(
    body: ProductRequest,
    db: AsyncSession = Depends(get_db),
    service: ProductService = Depends(get_product_service),
) -> Dict[str, Any]:
    logger.info("api_create_product_request", name=body.name)
    return await service.create_product(
        name=body.name,
        price=body.price,
        stock=body.stock,
        description=body.description,
        category=body.category,
        sku=body.sku,
        db=db,
    )


@product_router.get("", response_model=List[ProductResponse], summary="List active products")
async def list_products(
    db: AsyncSession = Depends(get_db),
    service: ProductService = Depends(get_product_service),
) -> List[Dict[str, Any]]:
    return await service.list_active_products(db)


@product_router.get(
    "/{product_id}", response_model=ProductResponse, summary="Get an active product"
)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    service: ProductService = Depends(get_product_service),
) -> Dict[str, Any]:
    return await service.get_product(product_id, db)


@product_router.put("/{product_id}", response_model=ProductResponse, summary="Update a product")
async def update_product(
    product_id: int,
    body: ProductRequest,
    db: AsyncSession = Depends(get_db),
    service: ProductService = Depends(get_product_service),
) -> Dict[str, Any]:
    logger.info("api_update_product_request", product_id=product_id)
    return await service.update_product(
        product_id=product_id,
        name=body.name,
        price=body.price,
        stock=body.stock,
        description=body.description,
        category=body.category,
        sku=body.sku,
        db=db,
    )


# Orders


@order_router.post(
    "/cart/{customer_id}",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a product to the cart",
)
async def add_to_cart(
    customer_id: int,
    body: AddToCartRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Dict[str, Any]:
    logger.info(
        "api_add_to_cart_request",
        customer_id=customer_id,
        product_id=body.product_id,
        quantity=body.quantity,
    )
    return await service.add_to_cart(
        customer_id, body.product_id, body.quantity, db, source_ip=client_ip(request)
    )


@order_router.get(
    "/cart/{customer_id}", response_model=OrderResponse, summary="Get the active cart"
)
async def get_cart(
    customer_id: int,
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Dict[str, Any]:
    return await service.get_cart(customer_id, db)


# Payments


@payment_router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Check out the active cart",
    description="Create a pending order from the cart and authorize payment with retries",
)
async def process_checkout(
    body: CheckoutRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """
    Process checkout.

    Responds 402 when every authorization attempt was declined; the order is
    then already CANCELLED and the payment FAILED_FINAL.
    """
    logger.info("api_checkout_request", customer_id=body.customer_id)
    result = await service.process_checkout(body, db, source_ip=client_ip(request))
    logger.info(
        "api_checkout_success",
        order_id=result["order_id"],
        payment_status=result["payment"]["status"],
    )
    return result


@payment_router.get(
    "/checkout/{customer_id}/{order_id}",
    response_model=CheckoutResponse,
    summary="Get checkout status",
)
async def get_checkout_status(
    customer_id: int,
    order_id: int,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    return await service.get_checkout_status(customer_id, order_id, db)


# Tokenization


@tokenization_router.post(
    "/tokens",
    response_model=TokenizationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Tokenize a card",
)
async def create_token(
    body: TokenizationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: TokenizationService = Depends(get_tokenization_service),
) -> Dict[str, Any]:
    logger.info("api_create_token_request", last_four=body.card_number[-4:])
    return await service.create_token(
        card_number=body.card_number,
        cvv=body.cvv,
        expiration_date=body.expiration_date,
        cardholder_name=body.cardholder_name,
        db=db,
        source_ip=client_ip(request),
    )


# Audit


def _page_to_dict(page: AuditPage) -> Dict[str, Any]:
    return {
        "items": [audit_log_to_dict(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "size": page.size,
        "pages": page.pages,
    }


def _parse_event_type(value: str) -> EventType:
    try:
        return EventType(value.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid event type: {value}"
        )


def _parse_event_status(value: str) -> EventStatus:
    try:
        return EventStatus(value.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid status: {value}"
        )


PageQuery = Query(0, ge=0, description="Page index, 0-based")
SizeQuery = Query(20, ge=1, le=100, description="Page size")


# Registered before /{audit_id} so the literal path wins
@audit_router.get(
    "/date-range",
    response_model=Page[AuditLogResponse],
    summary="Audit records in a date range",
)
async def audit_by_date_range(
    start_date: datetime,
    end_date: datetime,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date",
        )
    return _page_to_dict(await audit.list_by_date_range(db, start_date, end_date, page, size))


@audit_router.get("/{audit_id}", response_model=AuditLogResponse, summary="Audit record by id")
async def audit_by_id(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    record = await audit.get_by_id(db, audit_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Audit record {audit_id} not found",
        )
    return audit_log_to_dict(record)


@audit_router.get(
    "/entity/{entity_id}",
    response_model=List[AuditLogResponse],
    summary="Audit trail of an entity",
)
async def audit_by_entity_id(
    entity_id: str,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> List[Dict[str, Any]]:
    return [audit_log_to_dict(item) for item in await audit.list_by_entity_id(db, entity_id)]


@audit_router.get(
    "/event-type/{event_type}",
    response_model=Page[AuditLogResponse],
    summary="Audit records by event type",
)
async def audit_by_event_type(
    event_type: str,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    parsed = _parse_event_type(event_type)
    return _page_to_dict(await audit.list_by_event_type(db, parsed, page, size))


@audit_router.get(
    "/entity-type/{entity_type}",
    response_model=Page[AuditLogResponse],
    summary="Audit records by entity type",
)
async def audit_by_entity_type(
    entity_type: str,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    return _page_to_dict(await audit.list_by_entity_type(db, entity_type, page, size))


@audit_router.get(
    "/user/{user_id}",
    response_model=Page[AuditLogResponse],
    summary="Audit records by user",
)
async def audit_by_user(
    user_id: str,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    return _page_to_dict(await audit.list_by_user_id(db, user_id, page, size))


@audit_router.get(
    "/status/{event_status}",
    response_model=Page[AuditLogResponse],
    summary="Audit records by status",
)
async def audit_by_status(
    event_status: str,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    parsed = _parse_event_status(event_status)
    return _page_to_dict(await audit.list_by_status(db, parsed, page, size))


@audit_router.get(
    "/event-type/{event_type}/status/{event_status}",
    response_model=Page[AuditLogResponse],
    summary="Audit records by event type and status",
)
async def audit_by_event_type_and_status(
    event_type: str,
    event_status: str,
    page: int = PageQuery,
    size: int = SizeQuery,
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Dict[str, Any]:
    parsed_type = _parse_event_type(event_type)
    parsed_status = _parse_event_status(event_status)
    return _page_to_dict(
        await audit.list_by_event_type_and_status(db, parsed_type, parsed_status, page, size)
    )


# Monitoring


@monitoring_router.get("/ping", summary="Liveness ping")
async def ping() -> Dict[str, str]:
    return {"status": "ok", "message": "pong"}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Database status plus SMTP relay reachability",
)
async def health() -> Dict[str, Any]:
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    """503 until the database answers."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

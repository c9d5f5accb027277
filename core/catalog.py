"""Product catalog management."""
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.audit import AuditRecorder
from core.exceptions import ProductNotFoundError
from core.projections import product_to_dict
from database.models import EventType, Product, utcnow

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class ProductService:
    """Create, list, fetch and update catalog products."""

    def __init__(self, audit: Optional[AuditRecorder] = None) -> None:
        self.audit = audit or AuditRecorder()

    async def create_product(
        self,
        name: str,
        price: Decimal,
        stock: int,
        db: AsyncSession,
        description: Optional[str] = None,
        category: Optional[str] = None,
        sku: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an active product."""
        logger.info("product_creation_started", name=name)

        now = utcnow()
        product = Product(
            name=name,
            description=description,
            price=Decimal(price).quantize(CENT),
            stock=stock,
            category=category,
            sku=sku,
            active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(product)
        await db.commit()

        logger.info("product_created", product_id=product.id)
        await self.audit.log_success(
            EventType.PRODUCT_CREATED,
            "PRODUCT",
            str(product.id),
            None,
            f"Product '{product.name}' created",
            details={"price": product.price, "stock": product.stock},
        )
        return product_to_dict(product)

    async def list_active_products(self, db: AsyncSession) -> List[Dict[str, Any]]:
        """All active products, by id."""
        result = await db.execute(
            select(Product).where(Product.active.is_(True)).order_by(Product.id)
        )
        return [product_to_dict(product) for product in result.scalars().all()]

    async def get_product(self, product_id: int, db: AsyncSession) -> Dict[str, Any]:
        """
        Fetch an active product.

        Raises:
            ProductNotFoundError: If missing or inactive
        """
        product = await db.get(Product, product_id)
        if product is None or not product.active:
            raise ProductNotFoundError(f"Product with ID {product_id} not found or is inactive")
        return product_to_dict(product)

    async def update_product(
        self,
        product_id: int,
        name: str,
        price: Decimal,
        stock: int,
        db: AsyncSession,
        description: Optional[str] = None,
        category: Optional[str] = None,
        sku: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Replace a product's editable fields.

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        logger.info("product_update_started", product_id=product_id)

        product = await db.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(f"Product with ID {product_id} not found")

        product.name = name
        product.description = description
        product.price = Decimal(price).quantize(CENT)
        product.stock = stock
        product.category = category
        product.sku = sku
        product.updated_at = utcnow()
        await db.commit()

        logger.info("product_updated", product_id=product.id)
        await self.audit.log_success(
            EventType.PRODUCT_UPDATED,
            "PRODUCT",
            str(product.id),
            None,
            f"Product '{product.name}' updated",
            details={"price": product.price, "stock": product.stock},
        )
        return product_to_dict(product)

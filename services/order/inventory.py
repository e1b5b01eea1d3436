"""
services/order/inventory.py
Product lookup and stock mutation for order acceptance and cancellation.
Whenever a product carries per-size inventory, its flat stock is
re-derived from the sizes after every change.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import String, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import OrderItem, Product
from shared.utils.errors import InvalidInputError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


def _lower(column):
    return func.lower(column, type_=String)


async def _load_product(db: AsyncSession, *criteria) -> list[Product]:
    result = await db.execute(
        select(Product)
        .where(*criteria)
        .order_by(Product.created_at, Product.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars())


async def resolve_product(
    db: AsyncSession,
    professional_id: uuid.UUID,
    product_name: Optional[str],
    product_id: Optional[uuid.UUID] = None,
) -> Product:
    """
    Find the professional's product for a purchase intent.

    An explicit product_id wins. Otherwise match the name case-insensitively:
    exact title/name equality first, then substring. Several candidates
    resolve to the oldest one and the ambiguity is logged.
    """
    if product_id is not None:
        products = await _load_product(
            db, Product.id == product_id, Product.professional_id == professional_id
        )
        if not products:
            raise NotFoundError("Product not found")
        return products[0]

    name = (product_name or "").strip().lower()
    if not name:
        raise InvalidInputError("Product name is required")

    candidates = await _load_product(
        db,
        Product.professional_id == professional_id,
        or_(_lower(Product.title) == name, _lower(Product.name) == name),
    )
    match_kind = "exact"
    if not candidates:
        match_kind = "partial"
        candidates = await _load_product(
            db,
            Product.professional_id == professional_id,
            or_(
                _lower(Product.title).contains(name, autoescape=True),
                _lower(Product.name).contains(name, autoescape=True),
            ),
        )

    if not candidates:
        raise NotFoundError(f"Product not found: {product_name}")

    if len(candidates) > 1:
        logger.warning(
            f"Ambiguous {match_kind} product match for '{product_name}': "
            f"{[str(p.id) for p in candidates]}; using {candidates[0].id}"
        )
    return candidates[0]


def decrement_stock(product: Product, size: Optional[str], quantity: int) -> None:
    """Take `quantity` units out of the matching size (or flat) stock, or raise InvalidStateError."""
    if product.has_size_inventory:
        entry = product.find_size(size)
        if entry is None:
            raise InvalidStateError(f"Size '{size}' is not available for this product")
        if entry.stock < quantity:
            raise InvalidStateError(
                f"Insufficient stock for size {entry.size}: {entry.stock} left, {quantity} requested"
            )
        entry.stock -= quantity
        product.sync_stock()
        return

    if product.stock < quantity:
        raise InvalidStateError(
            f"Insufficient stock: {product.stock} left, {quantity} requested"
        )
    product.stock -= quantity


def return_stock(product: Product, size: Optional[str], quantity: int) -> None:
    """Put `quantity` units back; flat stock is recomputed from sizes when they exist."""
    if product.has_size_inventory:
        entry = product.find_size(size)
        if entry is None:
            logger.warning(
                f"Size '{size}' missing on product {product.id}; {quantity} unit(s) not returned"
            )
        else:
            entry.stock += quantity
        product.sync_stock()
        return

    product.stock += quantity


async def return_item_to_stock(db: AsyncSession, item: OrderItem) -> bool:
    """Return one order line to inventory. False when its product no longer exists."""
    if item.product_id is None:
        return False
    products = await _load_product(db, Product.id == item.product_id)
    if not products:
        logger.warning(f"Product {item.product_id} gone; order item {item.id} not returned to stock")
        return False
    return_stock(products[0], item.size, item.quantity)
    return True

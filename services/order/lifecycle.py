"""
services/order/lifecycle.py
Order lifecycle: chat purchase intents accepted or rejected by the
receiving professional, then shipped, delivered or cancelled.

States: PENDING → SHIPPED → DELIVERED, any → CANCELLED
Stock is taken on acceptance and may be returned on cancellation.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from config.settings import settings
from services.notification.dispatcher import NotificationDispatcher
from services.order.inventory import (
    decrement_stock,
    resolve_product,
    return_item_to_stock,
    return_stock,
)
from shared.models.models import (
    Message,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    Professional,
    User,
    UserRole,
)
from shared.utils.errors import (
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from shared.utils.saga import Saga
from shared.utils.sequences import generate_order_number

logger = logging.getLogger(__name__)

PROFESSIONAL_ORDERS_LINK = "/dashboard/professional/orders"


def coerce_quantity(value: Any) -> int:
    """Accept ints and integral strings/floats; anything else, or < 1, is invalid input."""
    if isinstance(value, bool):
        raise InvalidInputError("Quantity must be a positive integer")
    try:
        if isinstance(value, str):
            value = value.strip()
            quantity = int(value)
        elif isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            quantity = int(value)
        else:
            quantity = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid quantity: {value!r}")
    if quantity < 1:
        raise InvalidInputError("Quantity must be a positive integer")
    return quantity


def _to_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"Invalid {field}: {value!r}")
    if amount < 0:
        raise InvalidInputError(f"{field.capitalize()} cannot be negative")
    return amount


class OrderLifecycleManager:
    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher):
        self.db = db
        self.notifier = notifier

    # ── Loaders ───────────────────────────────────────────────

    async def _get_message_for_receiver(self, message_id: uuid.UUID, actor: User) -> Message:
        message = await self.db.get(Message, message_id)
        if not message:
            raise NotFoundError("Order message not found")
        if message.receiver_id != actor.id:
            raise ForbiddenError("You are not allowed to process this order")
        return message

    async def _get_professional_for_user(self, user: User) -> Optional[Professional]:
        return await self.db.scalar(select(Professional).where(Professional.user_id == user.id))

    async def _get_order_or_404(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        return order

    # ── Accept ────────────────────────────────────────────────

    async def accept_order(
        self,
        message_id: uuid.UUID,
        actor: User,
        product_name: Optional[str],
        quantity: Any = 1,
        size: Optional[str] = None,
        price: Any = None,
        currency: Optional[str] = None,
        total: Any = None,
        product_id: Optional[uuid.UUID] = None,
        client_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Turn a purchase-intent message into an order.
        1. Validate quantity, message ownership and professional
        2. Resolve the product (explicit id, then name match)
        3. Saga: decrement stock → mark message processed → insert order
        4. Best effort: notify professional and client
        """
        qty = coerce_quantity(quantity)
        unit_price_override = _to_decimal(price, "price")
        total_override = _to_decimal(total, "total")

        message = await self._get_message_for_receiver(message_id, actor)
        professional = await self._get_professional_for_user(actor)
        if not professional:
            raise NotFoundError("Professional not found")
        if message.order_processed:
            raise InvalidStateError("This order has already been processed")

        if client_id is not None and client_id != message.sender_id:
            logger.warning(
                f"accept_order: client {client_id} differs from message sender "
                f"{message.sender_id}; ordering for the sender"
            )

        product = await resolve_product(self.db, professional.id, product_name, product_id)

        unit_price = unit_price_override if unit_price_override is not None else Decimal(product.price)
        order_currency = (currency or settings.DEFAULT_CURRENCY).upper()
        total_amount = unit_price * qty
        if total_override is not None and total_override != total_amount:
            raise InvalidInputError(
                f"Total {total_override} does not match {qty} x {unit_price} = {total_amount}"
            )

        async def take_stock():
            decrement_stock(product, size, qty)
            await self.db.flush()
            return product

        async def put_stock_back(taken: Product):
            return_stock(taken, size, qty)
            await self.db.flush()

        async def mark_processed():
            message.order_processed = True
            await self.db.flush()
            return message

        async def unmark_processed(marked: Message):
            marked.order_processed = False
            await self.db.flush()

        async def insert_order():
            return await self._insert_order(
                client_id=message.sender_id,
                professional=professional,
                product=product,
                quantity=qty,
                unit_price=unit_price,
                currency=order_currency,
                size=size,
                total_amount=total_amount,
                message=message,
            )

        saga = Saga("accept_order")
        await saga.step(take_stock, compensation=put_stock_back)
        await saga.step(mark_processed, compensation=unmark_processed)
        order = await saga.step(insert_order)

        logger.info(
            f"Order {order.order_number} accepted: {qty} x {product.title}"
            f"{f' ({size})' if size else ''}, stock now {product.stock}"
        )

        await self._notify_new_order(order, professional, product)
        return order

    async def _insert_order(
        self,
        client_id: uuid.UUID,
        professional: Professional,
        product: Product,
        quantity: int,
        unit_price: Decimal,
        currency: str,
        size: Optional[str],
        total_amount: Decimal,
        message: Message,
    ) -> Order:
        """Insert the order, retrying with a fresh number if it collides."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.ORDER_NUMBER_MAX_ATTEMPTS),
            retry=retry_if_exception_type(IntegrityError),
            reraise=True,
        ):
            with attempt:
                order = Order(
                    order_number=generate_order_number(),
                    client_id=client_id,
                    professional_id=professional.id,
                    items=[
                        OrderItem(
                            product_id=product.id,
                            professional_id=professional.id,
                            product_title=product.title,
                            quantity=quantity,
                            unit_price=unit_price,
                            currency=currency,
                            size=size,
                        )
                    ],
                    total_amount=total_amount,
                    currency=currency,
                    status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    payment_method=PaymentMethod.CASH_ON_DELIVERY,
                    message_id=message.id,
                )
                async with self.db.begin_nested():
                    self.db.add(order)
        return order

    async def _notify_new_order(self, order: Order, professional: Professional, product: Product) -> None:
        payload = {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
            "items_count": len(order.items),
        }
        await self.notifier.notify(
            professional.user_id,
            "New order",
            f"Order #{order.order_number} - {product.title} ({order.total_amount} {order.currency})",
            "new_order",
            link=PROFESSIONAL_ORDERS_LINK,
            payload=payload,
            order_id=order.id,
        )
        await self.notifier.notify(
            order.client_id,
            "Order placed",
            f"Your order #{order.order_number} for {product.title} has been accepted",
            "order_placed",
            link="/orders",
            payload=payload,
            order_id=order.id,
        )

    # ── Reject ────────────────────────────────────────────────

    async def reject_order(
        self,
        message_id: uuid.UUID,
        actor: User,
        reason: Optional[str] = None,
        client_id: Optional[uuid.UUID] = None,
    ) -> Message:
        """Mark the intent rejected. Nothing was reserved, so inventory is untouched."""
        message = await self._get_message_for_receiver(message_id, actor)
        if client_id is not None and client_id != message.sender_id:
            logger.warning(
                f"reject_order: client {client_id} differs from message sender "
                f"{message.sender_id}; ignoring it"
            )
        if message.order_processed and not message.order_rejected:
            raise InvalidStateError("This order has already been accepted")

        message.order_processed = True
        message.order_rejected = True
        message.rejection_reason = reason or settings.DEFAULT_ORDER_REJECTION_REASON
        await self.db.flush()
        logger.info(f"Order message {message.id} rejected: {message.rejection_reason}")
        return message

    # ── Status ────────────────────────────────────────────────

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        actor: User,
        status: str,
        return_to_stock: bool = False,
        cancellation_message: Optional[str] = None,
    ) -> Order:
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise InvalidInputError(f"Invalid order status: {status}")

        order = await self._get_order_or_404(order_id)
        professional = await self._get_professional_for_user(actor)
        if professional is None or order.professional_id != professional.id:
            raise ForbiddenError("Not authorized to update this order")

        previous = order.status
        now = datetime.now(timezone.utc)

        # Stock goes back at most once per order, on a transition into cancelled
        if (
            new_status == OrderStatus.CANCELLED
            and previous != OrderStatus.CANCELLED
            and return_to_stock
        ):
            if order.stock_returned:
                logger.warning(f"Order {order.order_number}: stock already returned, not returning again")
            else:
                for item in order.items:
                    if await return_item_to_stock(self.db, item):
                        logger.info(f"Returned {item.quantity} x {item.product_title} to stock")
                order.stock_returned = True

        order.status = new_status
        if new_status == OrderStatus.SHIPPED:
            order.shipped_at = now
        elif new_status == OrderStatus.DELIVERED:
            order.delivered_at = now
        elif new_status == OrderStatus.CANCELLED:
            order.cancelled_at = now
            if cancellation_message:
                line = f"Cancellation reason: {cancellation_message}"
                order.notes = f"{order.notes}\n\n{line}" if order.notes else line

        await self.db.flush()
        logger.info(f"Order {order.order_number}: {previous.value} → {new_status.value}")

        await self._notify_status_change(order, professional, new_status, cancellation_message)
        return order

    async def _notify_status_change(
        self,
        order: Order,
        professional: Professional,
        new_status: OrderStatus,
        cancellation_message: Optional[str],
    ) -> None:
        payload = {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": new_status.value,
        }
        client_text = f"Your order #{order.order_number} is now {new_status.value}"
        if new_status == OrderStatus.CANCELLED and cancellation_message:
            client_text = f"{client_text}: {cancellation_message}"
        await self.notifier.notify(
            order.client_id,
            "Order update",
            client_text,
            f"order_{new_status.value}",
            link="/orders",
            payload=payload,
            order_id=order.id,
        )
        if new_status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            await self.notifier.notify(
                professional.user_id,
                f"Order {new_status.value}",
                f"Order #{order.order_number} was marked {new_status.value}",
                f"order_{new_status.value}",
                link=PROFESSIONAL_ORDERS_LINK,
                payload=payload,
                order_id=order.id,
            )

    # ── Reads ─────────────────────────────────────────────────

    async def get_order(self, order_id: uuid.UUID, actor: User) -> Order:
        order = await self._get_order_or_404(order_id)
        if order.client_id == actor.id or actor.role == UserRole.ADMIN:
            return order
        professional = await self._get_professional_for_user(actor)
        if professional is None or order.professional_id != professional.id:
            raise ForbiddenError("Not authorized to view this order")
        return order

    async def list_orders(
        self,
        actor: User,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Order], int, int]:
        if actor.role == UserRole.PROFESSIONAL:
            professional = await self._get_professional_for_user(actor)
            condition = Order.professional_id == (professional.id if professional else None)
        else:
            condition = Order.client_id == actor.id

        query = select(Order).where(condition)
        if status:
            try:
                query = query.where(Order.status == OrderStatus(status))
            except ValueError:
                raise InvalidInputError(f"Invalid order status: {status}")

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(Order.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars()), total, math.ceil(total / page_size)

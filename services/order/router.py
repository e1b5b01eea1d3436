"""
services/order/router.py
Professional-side order handling: accept or reject chat purchase intents,
then drive the order through shipping and delivery.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.dispatcher import NotificationDispatcher
from services.notification.publisher import LivePublisher, get_live_publisher
from services.order.lifecycle import OrderLifecycleManager
from shared.middleware.auth import get_current_user, require_professional
from shared.models.models import User
from shared.schemas.schemas import (
    MessageStatusResponse,
    OrderAcceptRequest,
    OrderRejectRequest,
    OrderResponse,
    OrderStatusUpdateRequest,
    PaginatedResponse,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_order_manager(
    db: AsyncSession = Depends(get_db),
    publisher: LivePublisher = Depends(get_live_publisher),
) -> OrderLifecycleManager:
    return OrderLifecycleManager(db, NotificationDispatcher(db, publisher))


@router.post("/accept", response_model=OrderResponse)
async def accept_order(
    data: OrderAcceptRequest,
    current_user: User = Depends(require_professional),
    manager: OrderLifecycleManager = Depends(get_order_manager),
):
    """Accept a purchase intent and take the stock."""
    order = await manager.accept_order(
        message_id=data.message_id,
        actor=current_user,
        product_name=data.product_name,
        quantity=data.quantity,
        size=data.size,
        price=data.price,
        currency=data.currency,
        total=data.total,
        product_id=data.product_id,
        client_id=data.client_id,
    )
    return OrderResponse.model_validate(order)


@router.post("/reject", response_model=MessageStatusResponse)
async def reject_order(
    data: OrderRejectRequest,
    current_user: User = Depends(require_professional),
    manager: OrderLifecycleManager = Depends(get_order_manager),
):
    message = await manager.reject_order(data.message_id, current_user, data.reason, data.client_id)
    return MessageStatusResponse.model_validate(message)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    data: OrderStatusUpdateRequest,
    current_user: User = Depends(require_professional),
    manager: OrderLifecycleManager = Depends(get_order_manager),
):
    order = await manager.update_order_status(
        order_id,
        current_user,
        data.status,
        return_to_stock=data.return_to_stock,
        cancellation_message=data.cancellation_message,
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=PaginatedResponse)
async def list_orders(
    status_filter: str = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    manager: OrderLifecycleManager = Depends(get_order_manager),
):
    orders, total, pages = await manager.list_orders(current_user, status_filter, page, page_size)
    return PaginatedResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    current_user: User = Depends(get_current_user),
    manager: OrderLifecycleManager = Depends(get_order_manager),
):
    return OrderResponse.model_validate(await manager.get_order(order_id, current_user))

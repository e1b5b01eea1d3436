"""
services/booking/router.py
HTTP surface for the booking lifecycle. Business rules live in
services/booking/lifecycle.py; handlers only map requests onto it.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import BookingLifecycleManager
from services.notification.dispatcher import NotificationDispatcher
from services.notification.email import EmailService
from services.notification.publisher import LivePublisher, get_live_publisher
from shared.middleware.auth import get_current_user, require_professional
from shared.models.models import User
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingPaymentRequest,
    BookingResponse,
    BookingStatusUpdateRequest,
    PaginatedResponse,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_manager(
    db: AsyncSession = Depends(get_db),
    publisher: LivePublisher = Depends(get_live_publisher),
) -> BookingLifecycleManager:
    return BookingLifecycleManager(db, NotificationDispatcher(db, publisher), EmailService())


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """Book a seat in a professional's session."""
    booking = await manager.create_booking(
        client=current_user,
        professional_id=data.professional_id,
        session_id=data.session_id,
        notes=data.notes,
        booking_type=data.booking_type,
    )
    return BookingResponse.model_validate(booking)


@router.get("", response_model=PaginatedResponse)
async def list_bookings(
    status_filter: str = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    bookings, total, pages = await manager.list_bookings(current_user, status_filter, page, page_size)
    return PaginatedResponse(
        items=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    return BookingResponse.model_validate(await manager.get_booking(booking_id, current_user))


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """Client, owning professional or admin cancels. Paid bookings can be refunded in full."""
    booking = await manager.cancel_booking(booking_id, current_user, data.reason, data.refund)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/payment", response_model=BookingResponse)
async def process_payment(
    booking_id: UUID,
    data: BookingPaymentRequest,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    booking = await manager.process_payment(booking_id, current_user, data.payment_method)
    return BookingResponse.model_validate(booking)


@router.put("/{booking_id}/status", response_model=BookingResponse)
async def respond_to_booking(
    booking_id: UUID,
    data: BookingStatusUpdateRequest,
    current_user: User = Depends(require_professional),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    """Professional confirms, declines, completes or marks a no-show."""
    booking = await manager.respond_to_booking(booking_id, current_user, data.status, data.reason)
    return BookingResponse.model_validate(booking)

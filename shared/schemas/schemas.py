"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    professional_id: uuid.UUID
    session_id: uuid.UUID
    notes: Optional[str] = Field(None, max_length=500)
    # "message" books through the chat flow and always starts pending
    booking_type: Optional[str] = None


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)
    refund: bool = False


class BookingPaymentRequest(BaseSchema):
    payment_method: Optional[str] = None


class BookingStatusUpdateRequest(BaseSchema):
    status: str
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    client_id: uuid.UUID
    professional_id: uuid.UUID
    session_id: Optional[uuid.UUID]
    service: Dict[str, Any]
    appointment_date: datetime
    appointment_start: str
    appointment_end: str
    location: Dict[str, Any]
    status: str
    payment_status: str
    payment_method: Optional[str]
    total_amount: Decimal
    currency: str
    client_notes: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by_id: Optional[uuid.UUID]
    cancelled_at: Optional[datetime]
    refund_amount: Optional[Decimal]
    created_at: datetime


# ── Order ─────────────────────────────────────────────────────

class OrderAcceptRequest(BaseSchema):
    message_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None
    product_name: str = Field(..., min_length=1, max_length=255)
    product_id: Optional[uuid.UUID] = None
    size: Optional[str] = Field(None, max_length=50)
    # Coerced by the order manager so malformed values map to invalid_input
    quantity: Any = 1
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    total: Optional[Decimal] = Field(None, ge=0)


class OrderRejectRequest(BaseSchema):
    message_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None
    reason: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdateRequest(BaseSchema):
    status: str
    return_to_stock: bool = False
    cancellation_message: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseSchema):
    id: uuid.UUID
    product_id: Optional[uuid.UUID]
    professional_id: Optional[uuid.UUID]
    product_title: str
    quantity: int
    unit_price: Decimal
    currency: str
    size: Optional[str]


class OrderResponse(BaseSchema):
    id: uuid.UUID
    order_number: str
    client_id: uuid.UUID
    professional_id: uuid.UUID
    items: List[OrderItemResponse]
    total_amount: Decimal
    currency: str
    status: str
    payment_status: str
    payment_method: str
    notes: Optional[str]
    message_id: Optional[uuid.UUID]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    stock_returned: bool
    created_at: datetime


class MessageStatusResponse(BaseSchema):
    id: uuid.UUID
    order_processed: bool
    order_rejected: bool
    rejection_reason: Optional[str]


# ── Event ─────────────────────────────────────────────────────

class EventRegisterRequest(BaseSchema):
    quantity: int = Field(1, ge=1)
    note: Optional[str] = Field(None, max_length=500)


class EventParticipantResponse(BaseSchema):
    id: uuid.UUID
    event_id: uuid.UUID
    user_id: uuid.UUID
    status: str
    quantity: int
    note: Optional[str]
    joined_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    message: str
    data: Dict[str, Any]
    link: Optional[str]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    booking_id: Optional[uuid.UUID]
    order_id: Optional[uuid.UUID]
    event_id: Optional[uuid.UUID]


class UnreadCountResponse(BaseSchema):
    unread_count: int


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None

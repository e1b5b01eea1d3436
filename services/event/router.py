"""
services/event/router.py
Event seat registration for clients.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.event.registration import EventRegistrationManager
from services.notification.dispatcher import NotificationDispatcher
from services.notification.publisher import LivePublisher, get_live_publisher
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import EventParticipantResponse, EventRegisterRequest

router = APIRouter(prefix="/events", tags=["Events"])


def get_registration_manager(
    db: AsyncSession = Depends(get_db),
    publisher: LivePublisher = Depends(get_live_publisher),
) -> EventRegistrationManager:
    return EventRegistrationManager(db, NotificationDispatcher(db, publisher))


@router.post(
    "/{event_id}/register",
    response_model=EventParticipantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_for_event(
    event_id: UUID,
    data: EventRegisterRequest,
    current_user: User = Depends(get_current_user),
    manager: EventRegistrationManager = Depends(get_registration_manager),
):
    participant = await manager.register(event_id, current_user, data.quantity, data.note)
    return EventParticipantResponse.model_validate(participant)


@router.post("/{event_id}/cancel", response_model=EventParticipantResponse)
async def cancel_registration(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    manager: EventRegistrationManager = Depends(get_registration_manager),
):
    participant = await manager.cancel_registration(event_id, current_user)
    return EventParticipantResponse.model_validate(participant)

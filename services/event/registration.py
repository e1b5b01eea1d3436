"""
services/event/registration.py
Event seat registration and the post-event review prompt.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.dispatcher import NotificationDispatcher
from shared.models.models import (
    Event,
    EventParticipant,
    EventStatus,
    Notification,
    NotificationType,
    ParticipantStatus,
    User,
)
from shared.utils.capacity import ensure_capacity
from shared.utils.errors import ConflictError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


class EventRegistrationManager:
    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher):
        self.db = db
        self.notifier = notifier

    async def _get_event_or_404(self, event_id: uuid.UUID) -> Event:
        result = await self.db.execute(
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise NotFoundError("Event not found")
        return event

    async def register(
        self,
        event_id: uuid.UUID,
        user: User,
        quantity: int = 1,
        note: Optional[str] = None,
    ) -> EventParticipant:
        event = await self._get_event_or_404(event_id)
        if event.status != EventStatus.APPROVED:
            raise InvalidStateError("This event is not open for registration")
        if event.active_registration(user.id):
            raise ConflictError("You are already registered for this event")

        ensure_capacity(event.seats_claimed, quantity, event.max_participants, "event")

        participant = EventParticipant(
            user_id=user.id,
            status=ParticipantStatus.PENDING,
            quantity=quantity,
            note=note,
        )
        event.participants.append(participant)
        await self.db.flush()
        logger.info(f"User {user.id} registered {quantity} seat(s) for event {event.id}")
        return participant

    async def cancel_registration(self, event_id: uuid.UUID, user: User) -> EventParticipant:
        event = await self._get_event_or_404(event_id)
        participant = event.active_registration(user.id)
        if participant is None:
            raise InvalidStateError("You are not registered for this event")
        participant.status = ParticipantStatus.CANCELLED
        await self.db.flush()
        logger.info(f"User {user.id} cancelled registration for event {event.id}")
        return participant

    async def request_event_reviews(self, now: Optional[datetime] = None) -> int:
        """
        Ask every active participant of a finished approved event for a review.
        Idempotent: a participant who already got the prompt for that event is skipped.
        Returns the number of prompts sent.
        """
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(Event).where(Event.status == EventStatus.APPROVED, Event.end_date < now)
        )
        sent = 0
        for event in result.scalars():
            for participant in event.active_participants:
                already_asked = await self.db.scalar(
                    select(Notification.id).where(
                        Notification.user_id == participant.user_id,
                        Notification.type == NotificationType.EVENT_REVIEW_REQUEST,
                        Notification.event_id == event.id,
                    ).limit(1)
                )
                if already_asked:
                    continue
                notification = await self.notifier.notify(
                    participant.user_id,
                    "How was the event?",
                    f"{event.title} - {event.date:%d/%m/%Y}. Share your experience with other participants.",
                    NotificationType.EVENT_REVIEW_REQUEST,
                    link=f"/events/{event.id}#reviews",
                    payload={"event_id": str(event.id), "event_title": event.title},
                    event_id=event.id,
                )
                if notification is not None:
                    sent += 1
        if sent:
            logger.info(f"Sent {sent} event review request(s)")
        return sent

"""
services/notification/dispatcher.py
Fire-and-forget notification emitter used by the lifecycle managers.

1. Persist the Notification row inside a SAVEPOINT (a failed insert
   never poisons the caller's transaction)
2. Push it to the recipient's live channel, if anyone is listening

Failures are logged and swallowed; notify() never raises.
"""

import logging
import uuid
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.publisher import LivePublisher, NullPublisher
from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)

LIVE_EVENT = "notification"


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": str(notification.id),
        "title": notification.title,
        "message": notification.message,
        "type": notification.type.value,
        "data": notification.data or {},
        "link": notification.link,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationDispatcher:
    def __init__(self, db: AsyncSession, publisher: Optional[LivePublisher] = None):
        self.db = db
        self.publisher = publisher or NullPublisher()

    async def notify(
        self,
        recipient_user_id: uuid.UUID,
        title: str,
        message: str,
        type: Union[NotificationType, str] = NotificationType.SYSTEM,
        link: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        booking_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
        event_id: Optional[uuid.UUID] = None,
    ) -> Optional[Notification]:
        notification_type = NotificationType.coerce(type)
        if notification_type == NotificationType.SYSTEM and type not in (
            NotificationType.SYSTEM,
            NotificationType.SYSTEM.value,
        ):
            logger.warning(f"Unknown notification type {type!r}, falling back to 'system'")

        try:
            async with self.db.begin_nested():
                notification = Notification(
                    user_id=recipient_user_id,
                    title=title,
                    message=message,
                    type=notification_type,
                    data=payload or {},
                    link=link,
                    booking_id=booking_id,
                    order_id=order_id,
                    event_id=event_id,
                )
                self.db.add(notification)
        except Exception as e:
            logger.error(f"Failed to save notification for user {recipient_user_id}: {e}")
            return None

        try:
            await self.publisher.publish(
                str(recipient_user_id), LIVE_EVENT, serialize_notification(notification)
            )
        except Exception as e:
            logger.warning(f"Live push failed for user {recipient_user_id}: {e}")

        return notification

"""
services/notification/router.py
The user's notification inbox. Rows are written by NotificationDispatcher;
this router only reads them, flips read flags and deletes.
"""

import math
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, User
from shared.schemas.schemas import (
    MessageResponse,
    NotificationResponse,
    PaginatedResponse,
    UnreadCountResponse,
)
from shared.utils.errors import NotFoundError

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _owned_by(user: User, unread: bool = False) -> list:
    conditions = [Notification.user_id == user.id]
    if unread:
        conditions.append(Notification.is_read.is_(False))
    return conditions


def _mark_read():
    return update(Notification).values(is_read=True, read_at=datetime.now(timezone.utc))


@router.get("", response_model=PaginatedResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first."""
    conditions = _owned_by(current_user, unread=unread_only)
    total = await db.scalar(select(func.count(Notification.id)).where(*conditions)) or 0
    rows = await db.scalars(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResponse(
        items=[NotificationResponse.model_validate(n) for n in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size),
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(select(func.count(Notification.id)).where(*_owned_by(current_user, unread=True)))
    return UnreadCountResponse(unread_count=count or 0)


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(_mark_read().where(*_owned_by(current_user, unread=True)))
    return MessageResponse(message=f"{result.rowcount} notification(s) marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        _mark_read().where(Notification.id == notification_id, *_owned_by(current_user))
    )
    if not result.rowcount:
        raise NotFoundError("Notification not found")
    return MessageResponse(message="Notification marked as read")


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, *_owned_by(current_user))
    )
    if not result.rowcount:
        raise NotFoundError("Notification not found")
    return MessageResponse(message="Notification deleted")

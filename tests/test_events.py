"""
tests/test_events.py
Event seat registration and the post-event review prompt.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.event.registration import EventRegistrationManager
from services.notification.dispatcher import NotificationDispatcher
from shared.models.models import EventStatus, Notification, NotificationType, ParticipantStatus
from tests.factories import auth_headers, make_event, make_user, reload


@pytest.mark.asyncio
async def test_register_claims_seats(client: AsyncClient, db: AsyncSession, client_user, professional_user):
    event = await make_event(db, professional_user, max_participants=3)

    response = await client.post(
        f"/events/{event.id}/register",
        headers=auth_headers(client_user),
        json={"quantity": 2, "note": "Bringing my sister"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["event_id"] == str(event.id)
    assert data["user_id"] == str(client_user.id)
    assert data["status"] == ParticipantStatus.PENDING.value
    assert data["quantity"] == 2

    event = await reload(db, event)
    assert event.seats_claimed == 2


@pytest.mark.asyncio
async def test_register_beyond_capacity(
    client: AsyncClient, db: AsyncSession, client_user, other_client, professional_user
):
    event = await make_event(db, professional_user, max_participants=3)
    other_headers = auth_headers(other_client)
    await client.post(f"/events/{event.id}/register", headers=auth_headers(client_user), json={"quantity": 2})

    response = await client.post(f"/events/{event.id}/register", headers=other_headers, json={"quantity": 2})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"
    assert "1" in response.json()["detail"]

    # The remaining seat is still claimable
    response = await client.post(f"/events/{event.id}/register", headers=other_headers, json={"quantity": 1})
    assert response.status_code == 201

    event = await reload(db, event)
    assert event.seats_claimed == 3


@pytest.mark.asyncio
async def test_register_twice_conflicts(client: AsyncClient, db: AsyncSession, client_user, professional_user):
    event = await make_event(db, professional_user)
    headers = auth_headers(client_user)

    assert (await client.post(f"/events/{event.id}/register", headers=headers, json={})).status_code == 201
    again = await client.post(f"/events/{event.id}/register", headers=headers, json={})
    assert again.status_code == 409
    assert again.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_register_unapproved_event(client: AsyncClient, db: AsyncSession, client_user, professional_user):
    event = await make_event(db, professional_user, status=EventStatus.PENDING)

    response = await client.post(f"/events/{event.id}/register", headers=auth_headers(client_user), json={})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_register_quantity_must_be_positive(
    client: AsyncClient, db: AsyncSession, client_user, professional_user
):
    event = await make_event(db, professional_user)

    response = await client.post(
        f"/events/{event.id}/register", headers=auth_headers(client_user), json={"quantity": 0}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_frees_seats_and_allows_reregistration(
    client: AsyncClient, db: AsyncSession, client_user, professional_user
):
    event = await make_event(db, professional_user, max_participants=2)
    headers = auth_headers(client_user)
    await client.post(f"/events/{event.id}/register", headers=headers, json={"quantity": 2})

    response = await client.post(f"/events/{event.id}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == ParticipantStatus.CANCELLED.value

    event = await reload(db, event)
    assert event.seats_claimed == 0

    again = await client.post(f"/events/{event.id}/cancel", headers=headers)
    assert again.status_code == 400
    assert again.json()["code"] == "invalid_state"

    rejoin = await client.post(f"/events/{event.id}/register", headers=headers, json={"quantity": 2})
    assert rejoin.status_code == 201


@pytest.mark.asyncio
async def test_unknown_event(client: AsyncClient, client_user):
    response = await client.post(f"/events/{uuid.uuid4()}/register", headers=auth_headers(client_user), json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_review_requests_sent_once(
    client: AsyncClient, db: AsyncSession, client_user, other_client, professional_user, published
):
    event = await make_event(db, professional_user, max_participants=5, starts_in=timedelta(days=1))
    leaver = await make_user(db, email="leaver@example.com")
    for user in (client_user, other_client, leaver):
        await client.post(f"/events/{event.id}/register", headers=auth_headers(user), json={})
    await client.post(f"/events/{event.id}/cancel", headers=auth_headers(leaver))

    manager = EventRegistrationManager(db, NotificationDispatcher(db, published))
    after_event = datetime.now(timezone.utc) + timedelta(days=2)

    assert await manager.request_event_reviews(now=after_event) == 2
    assert await manager.request_event_reviews(now=after_event) == 0

    prompts = (await db.execute(
        select(Notification).where(Notification.type == NotificationType.EVENT_REVIEW_REQUEST)
    )).scalars().all()
    assert sorted(n.user_id for n in prompts) == sorted([client_user.id, other_client.id])
    assert all(n.event_id == event.id for n in prompts)
    assert published.types_for(leaver.id) == []


@pytest.mark.asyncio
async def test_review_requests_skip_unfinished_events(db: AsyncSession, client_user, professional_user, published):
    await make_event(db, professional_user)
    manager = EventRegistrationManager(db, NotificationDispatcher(db, published))

    assert await manager.request_event_reviews() == 0

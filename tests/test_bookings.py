"""
tests/test_bookings.py
Booking lifecycle: create → pay → confirm → complete/cancel,
capacity, duplicate protection and notifications.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingMode,
    BookingStatus,
    Notification,
    NotificationType,
    PaymentStatus,
    SessionCategory,
    UserRole,
)
from tests.factories import auth_headers, make_professional, make_session, make_user, reload


async def _book(client: AsyncClient, user, professional, session, **extra):
    payload = {"professional_id": str(professional.id), "session_id": str(session.id), **extra}
    return await client.post("/bookings", headers=auth_headers(user), json=payload)


# ── Creation ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_auto_mode_confirms(
    client: AsyncClient, db: AsyncSession, client_user, professional, published
):
    """Auto booking mode confirms immediately and snapshots the session."""
    session = await make_session(db, professional, max_participants=3)

    response = await _book(client, client_user, professional, session, notes="First time")
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == BookingStatus.CONFIRMED.value
    assert data["payment_status"] == PaymentStatus.PENDING.value
    assert data["client_notes"] == "First time"
    assert data["service"]["name"] == "Morning Yoga"
    assert data["service"]["duration"] == 60
    assert data["service"]["price"] == {"amount": "150.00", "currency": "MAD"}
    assert data["location"]["type"] == "in_person"
    assert data["location"]["address"]["city"] == "Casablanca"
    assert data["appointment_start"] == session.start_time.strftime("%H:%M")
    assert data["appointment_end"] == (session.start_time + timedelta(minutes=60)).strftime("%H:%M")
    assert data["booking_number"].startswith("BK")
    assert data["booking_number"].endswith("0001")

    session = await reload(db, session)
    assert [p.user_id for p in session.participants] == [client_user.id]


@pytest.mark.asyncio
async def test_create_booking_manual_mode_stays_pending(client: AsyncClient, db: AsyncSession, client_user):
    pro_user = await make_user(db, role=UserRole.PROFESSIONAL, email="manual@example.com")
    professional = await make_professional(db, pro_user, booking_mode=BookingMode.MANUAL)
    session = await make_session(db, professional)

    response = await _book(client, client_user, professional, session)
    assert response.status_code == 201
    assert response.json()["status"] == BookingStatus.PENDING.value

    # Participant is added even while pending
    session = await reload(db, session)
    assert session.has_participant(client_user.id)


@pytest.mark.asyncio
async def test_message_booking_is_always_pending(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)

    response = await _book(client, client_user, professional, session, booking_type="message")
    assert response.status_code == 201
    assert response.json()["status"] == BookingStatus.PENDING.value


@pytest.mark.asyncio
async def test_online_session_location(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional, category=SessionCategory.ONLINE)

    response = await _book(client, client_user, professional, session)
    assert response.status_code == 201
    assert response.json()["location"] == {"type": "online", "online_link": "https://meet.example.com/yoga"}


@pytest.mark.asyncio
async def test_snapshot_survives_session_edit(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    session.title = "Renamed Flow"
    session.price = Decimal("999.00")
    await db.commit()

    response = await client.get(f"/bookings/{booking_id}", headers=auth_headers(client_user))
    assert response.json()["service"]["name"] == "Morning Yoga"
    assert response.json()["total_amount"] == "150.00"


@pytest.mark.asyncio
async def test_last_seat_then_full(client: AsyncClient, db: AsyncSession, client_user, other_client, professional):
    """Auto mode with one seat left: confirmed, session full, next attempt invalid_state."""
    session = await make_session(db, professional, max_participants=1)

    first = await _book(client, client_user, professional, session)
    assert first.status_code == 201
    assert first.json()["status"] == BookingStatus.CONFIRMED.value

    session = await reload(db, session)
    assert session.is_full

    second = await _book(client, other_client, professional, session)
    assert second.status_code == 400
    assert second.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_capacity_n_succeed_then_fail(client: AsyncClient, db: AsyncSession, professional):
    session = await make_session(db, professional, max_participants=3)
    clients = [await make_user(db, email=f"c{i}@example.com") for i in range(4)]

    for c in clients[:3]:
        response = await _book(client, c, professional, session)
        assert response.status_code == 201

    response = await _book(client, clients[3], professional, session)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"

    count = await db.scalar(select(Booking.id).where(Booking.client_id == clients[3].id))
    assert count is None


@pytest.mark.asyncio
async def test_duplicate_booking_conflict_then_allowed_after_cancel(
    client: AsyncClient, db: AsyncSession, client_user, professional
):
    session = await make_session(db, professional)
    headers = auth_headers(client_user)

    first = await _book(client, client_user, professional, session)
    assert first.status_code == 201

    duplicate = await _book(client, client_user, professional, session)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"

    cancel = await client.put(f"/bookings/{first.json()['id']}/cancel", headers=headers, json={})
    assert cancel.status_code == 200

    again = await _book(client, client_user, professional, session)
    assert again.status_code == 201


@pytest.mark.asyncio
async def test_booking_numbers_increase_within_day(client: AsyncClient, db: AsyncSession, professional):
    session = await make_session(db, professional)
    numbers = []
    for i in range(3):
        user = await make_user(db, email=f"seq{i}@example.com")
        numbers.append((await _book(client, user, professional, session)).json()["booking_number"])

    assert [n[-4:] for n in numbers] == ["0001", "0002", "0003"]
    assert len({n[:10] for n in numbers}) == 1


@pytest.mark.asyncio
async def test_create_booking_unknown_professional(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    response = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json={"professional_id": str(uuid.uuid4()), "session_id": str(session.id)},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_create_booking_unknown_session(client: AsyncClient, client_user, professional):
    response = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json={"professional_id": str(professional.id), "session_id": str(uuid.uuid4())},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_session_of_other_professional_rejected(client: AsyncClient, db: AsyncSession, client_user, professional):
    other_user = await make_user(db, role=UserRole.PROFESSIONAL, email="other-pro@example.com")
    other_pro = await make_professional(db, other_user)
    session = await make_session(db, other_pro)

    response = await _book(client, client_user, professional, session)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_past_session_cannot_be_booked(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional, starts_in=timedelta(hours=-2))

    response = await _book(client, client_user, professional, session)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_create_booking_notifies_professional(
    client: AsyncClient, db: AsyncSession, client_user, professional_user, professional, published
):
    session = await make_session(db, professional)
    response = await _book(client, client_user, professional, session)

    notifications = (await db.execute(
        select(Notification).where(Notification.user_id == professional_user.id)
    )).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.APPOINTMENT_SCHEDULED
    assert str(notifications[0].booking_id) == response.json()["id"]
    assert published.types_for(professional_user.id) == ["appointment_scheduled"]


@pytest.mark.asyncio
async def test_create_booking_writes_audit_log(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    logs = (await db.execute(select(BookingAuditLog))).scalars().all()
    assert len(logs) == 1
    assert str(logs[0].booking_id) == booking_id
    assert logs[0].from_status is None
    assert logs[0].to_status == BookingStatus.CONFIRMED.value


# ── Cancellation ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_client_cancel_removes_participant_and_notifies_professional(
    client: AsyncClient, db: AsyncSession, client_user, professional_user, professional, published
):
    session = await make_session(db, professional)
    headers = auth_headers(client_user)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=headers, json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.CANCELLED.value
    assert data["cancellation_reason"] == "No reason provided"
    assert data["cancelled_by_id"] == str(client_user.id)
    assert data["cancelled_at"] is not None

    session = await reload(db, session)
    assert session.participants == []
    assert published.types_for(professional_user.id) == ["appointment_scheduled", "appointment_cancelled"]


@pytest.mark.asyncio
async def test_professional_cancel_passes_reason_to_client(
    client: AsyncClient, db: AsyncSession, client_user, professional_user, professional, published
):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(
        f"/bookings/{booking_id}/cancel",
        headers=auth_headers(professional_user),
        json={"reason": "Studio closed for maintenance"},
    )
    assert response.status_code == 200

    client_events = [e for e in published.events if e["user_id"] == str(client_user.id)]
    assert len(client_events) == 1
    assert client_events[0]["payload"]["type"] == "appointment_cancelled"
    assert client_events[0]["payload"]["data"]["reason"] == "Studio closed for maintenance"


@pytest.mark.asyncio
async def test_pending_booking_can_be_cancelled(client: AsyncClient, db: AsyncSession, client_user):
    pro_user = await make_user(db, role=UserRole.PROFESSIONAL, email="m2@example.com")
    professional = await make_professional(db, pro_user, booking_mode=BookingMode.MANUAL)
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(client_user), json={})
    assert response.status_code == 200
    session = await reload(db, session)
    assert not session.has_participant(client_user.id)


@pytest.mark.asyncio
async def test_admin_can_cancel(client: AsyncClient, db: AsyncSession, client_user, admin_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(admin_user), json={})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(client: AsyncClient, db: AsyncSession, client_user, other_client, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(other_client), json={})
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_cancel_completed_booking_rejected(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    booking = await db.get(Booking, uuid.UUID(booking_id))
    booking.status = BookingStatus.COMPLETED
    await db.commit()

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(client_user), json={})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_cancel_paid_booking_with_refund(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    headers = auth_headers(client_user)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]
    await client.post(f"/bookings/{booking_id}/payment", headers=headers, json={"payment_method": "cash"})

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=headers, json={"refund": True})
    assert response.status_code == 200
    data = response.json()
    assert data["payment_status"] == PaymentStatus.REFUNDED.value
    assert data["refund_amount"] == data["total_amount"] == "150.00"


@pytest.mark.asyncio
async def test_refund_ignored_for_unpaid_booking(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(
        f"/bookings/{booking_id}/cancel", headers=auth_headers(client_user), json={"refund": True}
    )
    assert response.json()["payment_status"] == PaymentStatus.PENDING.value
    assert response.json()["refund_amount"] is None


# ── Payment ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_confirms_pending_booking_in_auto_mode(
    client: AsyncClient, db: AsyncSession, client_user, professional, published
):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session, booking_type="message")).json()["id"]

    response = await client.post(f"/bookings/{booking_id}/payment", headers=auth_headers(client_user), json={})
    assert response.status_code == 200
    data = response.json()
    assert data["payment_status"] == PaymentStatus.PAID.value
    assert data["payment_method"] == "credit_card"
    assert data["status"] == BookingStatus.CONFIRMED.value
    assert published.types_for(client_user.id) == ["appointment_scheduled"]


@pytest.mark.asyncio
async def test_payment_keeps_pending_in_manual_mode(client: AsyncClient, db: AsyncSession, client_user, published):
    pro_user = await make_user(db, role=UserRole.PROFESSIONAL, email="m3@example.com")
    professional = await make_professional(db, pro_user, booking_mode=BookingMode.MANUAL)
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.post(
        f"/bookings/{booking_id}/payment", headers=auth_headers(client_user), json={"payment_method": "bank_transfer"}
    )
    assert response.json()["status"] == BookingStatus.PENDING.value
    assert response.json()["payment_status"] == PaymentStatus.PAID.value
    assert published.types_for(client_user.id) == []


@pytest.mark.asyncio
async def test_double_payment_rejected(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    headers = auth_headers(client_user)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    assert (await client.post(f"/bookings/{booking_id}/payment", headers=headers, json={})).status_code == 200
    again = await client.post(f"/bookings/{booking_id}/payment", headers=headers, json={})
    assert again.status_code == 400
    assert again.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_only_client_can_pay(client: AsyncClient, db: AsyncSession, client_user, professional_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.post(f"/bookings/{booking_id}/payment", headers=auth_headers(professional_user), json={})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_paid(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    headers = auth_headers(client_user)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]
    await client.put(f"/bookings/{booking_id}/cancel", headers=headers, json={})

    response = await client.post(f"/bookings/{booking_id}/payment", headers=headers, json={})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_payment_method_rejected(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.post(
        f"/bookings/{booking_id}/payment", headers=auth_headers(client_user), json={"payment_method": "bitcoin"}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_input"


# ── Professional response ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_professional_confirms_then_completes(client: AsyncClient, db: AsyncSession, client_user):
    pro_user = await make_user(db, role=UserRole.PROFESSIONAL, email="m4@example.com")
    professional = await make_professional(db, pro_user, booking_mode=BookingMode.MANUAL)
    session = await make_session(db, professional)
    pro_headers = auth_headers(pro_user)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    confirmed = await client.put(f"/bookings/{booking_id}/status", headers=pro_headers, json={"status": "confirmed"})
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    completed = await client.put(f"/bookings/{booking_id}/status", headers=pro_headers, json={"status": "completed"})
    assert completed.json()["status"] == "completed"

    # Terminal now
    cancel = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(client_user), json={})
    assert cancel.status_code == 400


@pytest.mark.asyncio
async def test_pending_cannot_jump_to_completed(client: AsyncClient, db: AsyncSession, client_user):
    pro_user = await make_user(db, role=UserRole.PROFESSIONAL, email="m5@example.com")
    professional = await make_professional(db, pro_user, booking_mode=BookingMode.MANUAL)
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(
        f"/bookings/{booking_id}/status", headers=auth_headers(pro_user), json={"status": "completed"}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_other_professional_cannot_respond(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]
    intruder = await make_user(db, role=UserRole.PROFESSIONAL, email="intruder@example.com")
    await make_professional(db, intruder)

    response = await client.put(
        f"/bookings/{booking_id}/status", headers=auth_headers(intruder), json={"status": "no_show"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_client_role_cannot_use_status_endpoint(client: AsyncClient, db: AsyncSession, client_user, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.put(
        f"/bookings/{booking_id}/status", headers=auth_headers(client_user), json={"status": "completed"}
    )
    assert response.status_code == 403


# ── Reads ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_bookings_for_client_and_professional(
    client: AsyncClient, db: AsyncSession, client_user, other_client, professional_user, professional
):
    session = await make_session(db, professional)
    await _book(client, client_user, professional, session)
    await _book(client, other_client, professional, session)

    mine = await client.get("/bookings", headers=auth_headers(client_user))
    assert mine.status_code == 200
    assert mine.json()["total"] == 1

    incoming = await client.get("/bookings", headers=auth_headers(professional_user))
    assert incoming.json()["total"] == 2

    filtered = await client.get("/bookings?status=cancelled", headers=auth_headers(professional_user))
    assert filtered.json()["total"] == 0


@pytest.mark.asyncio
async def test_get_booking_hidden_from_strangers(client: AsyncClient, db: AsyncSession, client_user, other_client, professional):
    session = await make_session(db, professional)
    booking_id = (await _book(client, client_user, professional, session)).json()["id"]

    response = await client.get(f"/bookings/{booking_id}", headers=auth_headers(other_client))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_request_rejected(client: AsyncClient):
    response = await client.get("/bookings")
    assert response.status_code == 401

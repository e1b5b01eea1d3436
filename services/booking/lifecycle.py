"""
services/booking/lifecycle.py
Booking lifecycle: creation from a (professional, session) pair,
cancellation, payment and the professional's accept/decline responses.

States: PENDING → CONFIRMED → COMPLETED | NO_SHOW
        PENDING | CONFIRMED → CANCELLED (payment may still move to REFUNDED)

The booking row is the system of record. Notifications and emails run
after it is saved and never undo it.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.dispatcher import NotificationDispatcher
from services.notification.email import EmailService
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    Professional,
    Session,
    SessionParticipant,
    User,
    UserRole,
)
from shared.utils.capacity import ensure_capacity
from shared.utils.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from shared.utils.saga import Saga
from shared.utils.sequences import generate_booking_number

logger = logging.getLogger(__name__)

MESSAGE_BOOKING = "message"

# Transitions a professional may apply through respond_to_booking
PROFESSIONAL_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_service_snapshot(session: Session, currency: str) -> dict:
    """Point-in-time copy of the session; later session edits don't touch bookings."""
    return {
        "name": session.title,
        "description": session.description,
        "duration": session.duration,
        "price": {"amount": str(session.price), "currency": currency},
        "session_id": str(session.id),
    }


def build_location(session: Session, professional: Professional) -> dict:
    if session.is_online():
        return {"type": "online", "online_link": session.meeting_link}
    return {
        "type": "in_person",
        "address": {
            "street": session.location,
            "city": professional.city,
            "postal_code": professional.postal_code,
            "country": professional.country,
        },
    }


class BookingLifecycleManager:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationDispatcher,
        mailer: Optional[EmailService] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.mailer = mailer or EmailService()

    # ── Loaders ───────────────────────────────────────────────

    async def _get_booking_or_404(self, booking_id: uuid.UUID) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    async def _get_professional_or_404(self, professional_id: uuid.UUID) -> Professional:
        professional = await self.db.get(Professional, professional_id)
        if not professional:
            raise NotFoundError("Professional not found")
        return professional

    async def _load_session(self, session_id: Optional[uuid.UUID]) -> Optional[Session]:
        if session_id is None:
            return None
        result = await self.db.execute(
            select(Session)
            .where(Session.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _log_status_change(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        changed_by: Optional[User],
        reason: Optional[str] = None,
    ) -> None:
        """Append an immutable audit log entry for every status change."""
        self.db.add(BookingAuditLog(
            booking_id=booking.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by_id=changed_by.id if changed_by else None,
            reason=reason,
        ))

    def _is_professional_owner(self, professional: Optional[Professional], actor: User) -> bool:
        return professional is not None and professional.user_id == actor.id

    # ── Participants ──────────────────────────────────────────

    async def _add_participant(self, session: Session, user_id: uuid.UUID) -> None:
        if session.has_participant(user_id):
            return
        ensure_capacity(len(session.participants), 1, session.max_participants, "session")
        async with self.db.begin_nested():
            session.participants.append(SessionParticipant(user_id=user_id))

    async def _remove_participant(self, session_id: Optional[uuid.UUID], user_id: uuid.UUID) -> None:
        session = await self._load_session(session_id)
        if session is None:
            return
        for participant in list(session.participants):
            if participant.user_id == user_id:
                session.participants.remove(participant)
        await self.db.flush()

    # ── Create ────────────────────────────────────────────────

    async def create_booking(
        self,
        client: User,
        professional_id: uuid.UUID,
        session_id: uuid.UUID,
        notes: Optional[str] = None,
        booking_type: Optional[str] = None,
    ) -> Booking:
        """
        Book a seat in a professional's session.
        1. Validate professional, session and ownership
        2. Reject duplicates and unbookable sessions
        3. Saga: insert booking → add client to participants
        4. Best effort: notify the professional, send emails
        """
        professional = await self._get_professional_or_404(professional_id)
        session = await self._load_session(session_id)
        if not session:
            raise NotFoundError("Session not found")
        if session.professional_id != professional.id:
            raise InvalidInputError("Session does not belong to this professional")

        existing = await self.db.scalar(
            select(Booking.id).where(
                Booking.client_id == client.id,
                Booking.session_id == session.id,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
        if existing:
            raise ConflictError("You have already booked this session")

        if not session.can_be_booked():
            if session.is_full:
                raise InvalidStateError("This session is full")
            raise InvalidStateError("Session is not available for booking")

        if booking_type == MESSAGE_BOOKING:
            initial_status = BookingStatus.PENDING
        elif professional.auto_confirms:
            initial_status = BookingStatus.CONFIRMED
        else:
            initial_status = BookingStatus.PENDING

        currency = settings.DEFAULT_CURRENCY
        booking = Booking(
            booking_number=await generate_booking_number(self.db),
            client_id=client.id,
            professional_id=professional.id,
            session_id=session.id,
            service=build_service_snapshot(session, currency),
            appointment_date=session.start_time,
            appointment_start=session.start_time.astimezone(timezone.utc).strftime("%H:%M"),
            appointment_end=session.end_time.astimezone(timezone.utc).strftime("%H:%M"),
            location=build_location(session, professional),
            status=initial_status,
            payment_status=PaymentStatus.PENDING,
            total_amount=session.price,
            currency=currency,
            client_notes=notes,
            confirmed_at=_utcnow() if initial_status == BookingStatus.CONFIRMED else None,
        )

        async def insert_booking():
            async with self.db.begin_nested():
                self.db.add(booking)
            return booking

        async def delete_booking(created: Booking):
            await self.db.delete(created)
            await self.db.flush()

        async def add_participant():
            await self._add_participant(session, client.id)

        saga = Saga("create_booking")
        await saga.step(insert_booking, compensation=delete_booking)
        await saga.step(add_participant)

        await self._log_status_change(booking, None, initial_status, client)
        await self.db.flush()
        logger.info(
            f"Booking {booking.booking_number} created for session {session.id} "
            f"({initial_status.value})"
        )

        await self.notifier.notify(
            professional.user_id,
            "New booking",
            f"{client.full_name} booked \"{session.title}\" on "
            f"{session.start_time:%d/%m/%Y} at {booking.appointment_start}",
            NotificationType.APPOINTMENT_SCHEDULED,
            link=f"/dashboard/bookings/{booking.id}",
            payload={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "session_id": str(session.id),
                "status": booking.status.value,
            },
            booking_id=booking.id,
        )
        await self._send_booking_emails(booking, client, professional)
        return booking

    async def _send_booking_emails(self, booking: Booking, client: User, professional: Professional) -> None:
        if not self.mailer.is_configured:
            return
        try:
            professional_user = await self.db.get(User, professional.user_id)
            self.mailer.send_booking_confirmation(booking, client, professional)
            if professional_user:
                self.mailer.send_new_booking_notice(booking, client, professional_user)
        except Exception as e:
            logger.error(f"Booking emails failed for {booking.booking_number}: {e}")

    # ── Cancel ────────────────────────────────────────────────

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        actor: User,
        reason: Optional[str] = None,
        refund: bool = False,
    ) -> Booking:
        booking = await self._get_booking_or_404(booking_id)
        professional = await self.db.get(Professional, booking.professional_id)

        is_client = booking.client_id == actor.id
        is_professional = self._is_professional_owner(professional, actor)
        if not (is_client or is_professional or actor.role == UserRole.ADMIN):
            raise ForbiddenError("Not authorized to cancel this booking")

        if booking.is_terminal:
            raise InvalidStateError(f"Cannot cancel a booking with status: {booking.status.value}")

        await self._apply_cancellation(booking, actor, reason, refund)
        await self._notify_cancellation(booking, professional, actor, is_client)
        return booking

    async def _apply_cancellation(
        self,
        booking: Booking,
        actor: User,
        reason: Optional[str],
        refund: bool,
    ) -> None:
        previous = booking.status
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason or settings.DEFAULT_CANCELLATION_REASON
        booking.cancelled_by_id = actor.id
        booking.cancelled_at = _utcnow()

        if refund and booking.payment_status == PaymentStatus.PAID:
            booking.payment_status = PaymentStatus.REFUNDED
            booking.refund_amount = booking.total_amount

        await self._log_status_change(booking, previous, BookingStatus.CANCELLED, actor, booking.cancellation_reason)
        await self.db.flush()

        try:
            await self._remove_participant(booking.session_id, booking.client_id)
        except Exception as e:
            logger.error(f"Could not remove participant for booking {booking.booking_number}: {e}")

        logger.info(f"Booking {booking.booking_number} cancelled by {actor.id}")

    async def _notify_cancellation(
        self,
        booking: Booking,
        professional: Optional[Professional],
        actor: User,
        client_initiated: bool,
    ) -> None:
        service_name = (booking.service or {}).get("name", "Session")
        payload = {
            "booking_id": str(booking.id),
            "booking_number": booking.booking_number,
            "payment_status": booking.payment_status.value,
        }
        if client_initiated:
            if professional is None:
                return
            await self.notifier.notify(
                professional.user_id,
                "Booking cancelled",
                f"{actor.full_name} cancelled their booking for \"{service_name}\"",
                NotificationType.APPOINTMENT_CANCELLED,
                link=f"/dashboard/bookings/{booking.id}",
                payload=payload,
                booking_id=booking.id,
            )
        else:
            await self.notifier.notify(
                booking.client_id,
                "Booking cancelled",
                f"Your booking for \"{service_name}\" was cancelled. "
                f"Reason: {booking.cancellation_reason}",
                NotificationType.APPOINTMENT_CANCELLED,
                link=f"/bookings/{booking.id}",
                payload={**payload, "reason": booking.cancellation_reason},
                booking_id=booking.id,
            )

    # ── Payment ───────────────────────────────────────────────

    async def process_payment(
        self,
        booking_id: uuid.UUID,
        payer: User,
        payment_method: Optional[str] = None,
    ) -> Booking:
        booking = await self._get_booking_or_404(booking_id)
        if booking.client_id != payer.id:
            raise ForbiddenError("Not authorized to pay for this booking")

        if booking.status in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW) or booking.payment_status in (
            PaymentStatus.PAID,
            PaymentStatus.REFUNDED,
        ):
            raise InvalidStateError(
                f"Cannot process payment for a booking with status: {booking.status.value} "
                f"and payment status: {booking.payment_status.value}"
            )

        try:
            method = PaymentMethod(payment_method) if payment_method else PaymentMethod.CREDIT_CARD
        except ValueError:
            raise InvalidInputError(f"Unsupported payment method: {payment_method}")

        professional = await self.db.get(Professional, booking.professional_id)

        booking.payment_status = PaymentStatus.PAID
        booking.payment_method = method

        confirmed_now = False
        if booking.status == BookingStatus.PENDING and professional and professional.auto_confirms:
            booking.status = BookingStatus.CONFIRMED
            booking.confirmed_at = _utcnow()
            confirmed_now = True
            await self._log_status_change(booking, BookingStatus.PENDING, BookingStatus.CONFIRMED, payer, "payment received")

        await self.db.flush()
        logger.info(f"Payment recorded for booking {booking.booking_number} ({method.value})")

        if confirmed_now:
            await self.notifier.notify(
                booking.client_id,
                "Booking confirmed",
                f"Your booking #{booking.booking_number} is confirmed",
                NotificationType.APPOINTMENT_SCHEDULED,
                link=f"/bookings/{booking.id}",
                payload={"booking_id": str(booking.id), "status": booking.status.value},
                booking_id=booking.id,
            )

        if professional and self.mailer.is_configured:
            try:
                self.mailer.send_payment_confirmation(booking, payer, professional)
            except Exception as e:
                logger.error(f"Payment email failed for {booking.booking_number}: {e}")
        return booking

    # ── Professional response ─────────────────────────────────

    async def respond_to_booking(
        self,
        booking_id: uuid.UUID,
        actor: User,
        status: str,
        reason: Optional[str] = None,
    ) -> Booking:
        """Owning professional confirms, declines, completes or marks a no-show."""
        try:
            new_status = BookingStatus(status)
        except ValueError:
            raise InvalidInputError(f"Invalid booking status: {status}")

        booking = await self._get_booking_or_404(booking_id)
        professional = await self.db.get(Professional, booking.professional_id)
        if not self._is_professional_owner(professional, actor) and actor.role != UserRole.ADMIN:
            raise ForbiddenError("Not authorized to update this booking")

        allowed = PROFESSIONAL_TRANSITIONS.get(booking.status, set())
        if new_status not in allowed:
            raise InvalidStateError(
                f"Cannot move booking from {booking.status.value} to {new_status.value}"
            )

        client = await self.db.get(User, booking.client_id)

        if new_status == BookingStatus.CANCELLED:
            await self._apply_cancellation(booking, actor, reason, refund=False)
            await self._notify_cancellation(booking, professional, actor, client_initiated=False)
            self._send_status_email(booking, client, professional)
            return booking

        if new_status == BookingStatus.CONFIRMED:
            session = await self._load_session(booking.session_id)
            if session is not None:
                await self._add_participant(session, booking.client_id)
            booking.confirmed_at = _utcnow()
        elif new_status == BookingStatus.COMPLETED:
            booking.completed_at = _utcnow()

        previous = booking.status
        booking.status = new_status
        await self._log_status_change(booking, previous, new_status, actor, reason)
        await self.db.flush()
        logger.info(f"Booking {booking.booking_number}: {previous.value} → {new_status.value}")

        if new_status == BookingStatus.CONFIRMED:
            await self.notifier.notify(
                booking.client_id,
                "Booking confirmed",
                f"Your booking #{booking.booking_number} has been confirmed",
                NotificationType.APPOINTMENT_SCHEDULED,
                link=f"/bookings/{booking.id}",
                payload={"booking_id": str(booking.id), "status": new_status.value},
                booking_id=booking.id,
            )
            self._send_status_email(booking, client, professional)
        return booking

    def _send_status_email(self, booking: Booking, client: Optional[User], professional: Optional[Professional]) -> None:
        if client is None or professional is None or not self.mailer.is_configured:
            return
        try:
            self.mailer.send_booking_status_update(booking, client, professional)
        except Exception as e:
            logger.error(f"Status email failed for {booking.booking_number}: {e}")

    # ── Reads ─────────────────────────────────────────────────

    async def get_booking(self, booking_id: uuid.UUID, actor: User) -> Booking:
        booking = await self._get_booking_or_404(booking_id)
        if booking.client_id == actor.id or actor.role == UserRole.ADMIN:
            return booking
        professional = await self.db.get(Professional, booking.professional_id)
        if not self._is_professional_owner(professional, actor):
            raise ForbiddenError("Not authorized to view this booking")
        return booking

    async def list_bookings(
        self,
        actor: User,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Booking], int, int]:
        """Client's own bookings, or the professional's incoming ones. Returns (items, total, pages)."""
        if actor.role == UserRole.PROFESSIONAL:
            professional_id = await self.db.scalar(
                select(Professional.id).where(Professional.user_id == actor.id)
            )
            condition = Booking.professional_id == professional_id
        else:
            condition = Booking.client_id == actor.id

        query = select(Booking).where(condition)
        if status:
            try:
                query = query.where(Booking.status == BookingStatus(status))
            except ValueError:
                raise InvalidInputError(f"Invalid booking status: {status}")

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Booking.appointment_date.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        pages = math.ceil((total or 0) / page_size) if page_size else 0
        return list(result.scalars()), total or 0, pages

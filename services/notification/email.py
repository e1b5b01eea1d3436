"""
services/notification/email.py
Transactional booking emails. Rendering happens here, delivery is queued
on the Celery `send_email` task (Resend). With no RESEND_API_KEY every
method is a logged no-op.
"""

import logging
from html import escape
from typing import Any, Optional

from config.settings import Settings, settings as app_settings
from shared.models.models import Booking, Professional, User

logger = logging.getLogger(__name__)


def _e(value: Any) -> str:
    """HTML-escape any interpolated value; user text never reaches the body raw."""
    return escape("" if value is None else str(value))


def _layout(title: str, body: str, site_name: str) -> str:
    return f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background: #3F7D58; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
                <h1 style="color: white; margin: 0;">{_e(site_name)}</h1>
            </div>
            <div style="background: white; padding: 24px; border: 1px solid #eee; border-radius: 0 0 8px 8px;">
                <h2 style="color: #333;">{_e(title)}</h2>
                {body}
                <p style="color: #999; font-size: 12px; margin-top: 24px;">
                    You received this email because you have an account on {_e(site_name)}.
                </p>
            </div>
        </div>
        """


def _booking_details(booking: Booking) -> str:
    service = booking.service or {}
    price = service.get("price") or {}
    location = booking.location or {}
    if location.get("type") == "online":
        where = location.get("online_link")
    else:
        address = location.get("address") or {}
        where = ", ".join(str(v) for v in (address.get("street"), address.get("city")) if v)
    return f"""
                <table style="color: #666; line-height: 1.6;">
                    <tr><td>Booking</td><td>#{_e(booking.booking_number)}</td></tr>
                    <tr><td>Service</td><td>{_e(service.get("name", ""))}</td></tr>
                    <tr><td>Date</td><td>{booking.appointment_date:%d/%m/%Y}</td></tr>
                    <tr><td>Time</td><td>{_e(booking.appointment_start)} - {_e(booking.appointment_end)}</td></tr>
                    <tr><td>Where</td><td>{_e(where or "-")}</td></tr>
                    <tr><td>Price</td><td>{_e(price.get("amount", booking.total_amount))} {_e(price.get("currency", booking.currency))}</td></tr>
                </table>
    """


class EmailService:
    def __init__(self, config: Optional[Settings] = None):
        self.config = config or app_settings

    @property
    def is_configured(self) -> bool:
        return self.config.email_enabled

    def _queue(self, to_email: str, subject: str, html_body: str) -> bool:
        if not self.is_configured:
            logger.info(f"Email not configured, skipping '{subject}' to {to_email}")
            return False
        try:
            from tasks.notification_tasks import send_email
            send_email.delay(to_email, subject, html_body)
            return True
        except Exception as e:
            logger.error(f"Failed to queue email '{subject}' to {to_email}: {e}")
            return False

    def send_booking_confirmation(self, booking: Booking, client: User, professional: Professional) -> bool:
        """Client-side booking receipt."""
        title = f"Booking confirmation - {professional.business_name}"
        body = (
            f"<p>Hello {_e(client.first_name)},</p>"
            f"<p>Your booking with {_e(professional.business_name)} is registered "
            f"with status <b>{_e(booking.status.value)}</b>.</p>"
            + _booking_details(booking)
        )
        return self._queue(client.email, title, _layout(title, body, self.config.APP_NAME))

    def send_new_booking_notice(self, booking: Booking, client: User, professional_user: User) -> bool:
        """Professional-side new booking notice."""
        title = f"New booking - {(booking.service or {}).get('name', '')}"
        body = (
            f"<p>Hello {_e(professional_user.first_name)},</p>"
            f"<p>{_e(client.full_name)} booked a seat.</p>"
            + _booking_details(booking)
            + (f"<p>Client notes: {_e(booking.client_notes)}</p>" if booking.client_notes else "")
        )
        return self._queue(professional_user.email, title, _layout(title, body, self.config.APP_NAME))

    def send_booking_status_update(self, booking: Booking, client: User, professional: Professional) -> bool:
        """Client-side notice after the professional confirms or declines."""
        title = f"Booking {booking.status.value} - {professional.business_name}"
        body = (
            f"<p>Hello {_e(client.first_name)},</p>"
            f"<p>Your booking is now <b>{_e(booking.status.value)}</b>.</p>"
            + _booking_details(booking)
            + (f"<p>Reason: {_e(booking.cancellation_reason)}</p>" if booking.cancellation_reason else "")
        )
        return self._queue(client.email, title, _layout(title, body, self.config.APP_NAME))

    def send_payment_confirmation(self, booking: Booking, client: User, professional: Professional) -> bool:
        title = f"Payment confirmation - {professional.business_name}"
        body = (
            f"<p>Hello {_e(client.first_name)},</p>"
            f"<p>We received your payment of {_e(booking.total_amount)} {_e(booking.currency)} "
            f"({_e(booking.payment_method.value if booking.payment_method else '-')}).</p>"
            + _booking_details(booking)
        )
        return self._queue(client.email, title, _layout(title, body, self.config.APP_NAME))

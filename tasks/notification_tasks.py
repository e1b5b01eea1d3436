"""
tasks/notification_tasks.py
Celery tasks for email delivery and periodic notification prompts.

Usage from a service:
    from tasks.notification_tasks import send_email
    send_email.delay(to_email, subject, html_body)
"""

import asyncio
import logging

import pybreaker
import resend

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Opens after 5 consecutive Resend failures, half-opens after 60s
email_breaker = pybreaker.CircuitBreaker(fail_max=5, reset_timeout=60, name="resend")


# ── Core Delivery ─────────────────────────────────────────────────────────────

@email_breaker
def _deliver_email(to_email: str, subject: str, html_body: str) -> None:
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send({
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    })


def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    if not settings.email_enabled:
        logger.info(f"Email disabled, dropping '{subject}' to {to_email}")
        return True
    try:
        _deliver_email(to_email, subject, html_body)
        return True
    except pybreaker.CircuitBreakerError:
        logger.warning(f"Email circuit open, '{subject}' to {to_email} deferred")
        return False
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


# ── Channel Tasks ─────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email via Resend with retry on failure."""
    success = _send_email(to_email, subject, html_body)
    if not success:
        raise self.retry(countdown=60 * (2 ** self.request.retries))


# ── Periodic / Scheduled Tasks ────────────────────────────────────────────────

async def _request_event_reviews() -> int:
    from config.database import engine, get_db_context
    from config.redis_client import close_redis, init_redis
    from config import redis_client as redis_config
    from services.event.registration import EventRegistrationManager
    from services.notification.dispatcher import NotificationDispatcher
    from services.notification.publisher import get_live_publisher

    try:
        await init_redis()
    except Exception as e:
        logger.warning(f"Redis unavailable, review prompts will not be pushed live: {e}")
        redis_config.redis_client = None

    try:
        async with get_db_context() as db:
            manager = EventRegistrationManager(db, NotificationDispatcher(db, get_live_publisher()))
            return await manager.request_event_reviews()
    finally:
        await close_redis()
        # Pooled connections are bound to this event loop
        await engine.dispose()


@celery_app.task
def send_event_review_requests():
    """
    Beat task: runs every hour.
    Prompts participants of finished events for a review, once per (user, event).
    """
    try:
        sent = asyncio.run(_request_event_reviews())
        logger.info(f"Sent {sent} event review requests")
    except Exception as e:
        logger.exception(f"send_event_review_requests failed: {e}")

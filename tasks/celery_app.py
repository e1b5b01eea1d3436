"""
tasks/celery_app.py
Celery app for out-of-request work: email delivery and the hourly
post-event review prompts.

    celery -A tasks.celery_app worker -Q notifications --loglevel=info
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

NOTIFICATION_QUEUE = "notifications"

celery_app = Celery(
    "wellness_marketplace",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    timezone="Africa/Casablanca",
    # A worker killed mid-send must not drop the email
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_default_queue=NOTIFICATION_QUEUE,
    task_routes={"tasks.notification_tasks.*": {"queue": NOTIFICATION_QUEUE}},
    # Resend allows a handful of requests per second per key
    task_annotations={"tasks.notification_tasks.send_email": {"rate_limit": "10/s"}},
    beat_schedule={
        "send-event-review-requests": {
            "task": "tasks.notification_tasks.send_event_review_requests",
            "schedule": crontab(minute=0),
        },
    },
)

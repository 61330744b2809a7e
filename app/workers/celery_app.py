"""
Celery application for the outbox sender and wallet maintenance
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "lastmile_dispatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.LOCAL_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
    # A worker killed mid-send leaves the message PROCESSING; redelivery is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Slow ledger scans must not hold up notifications
    task_routes={
        "app.workers.tasks.process_outbox_messages": {"queue": "outbox"},
        "app.workers.tasks.send_message": {"queue": "outbox"},
        "app.workers.tasks.reconcile_wallets": {"queue": "maintenance"},
        "app.workers.tasks.cleanup_old_messages": {"queue": "maintenance"},
    },
)

celery_app.conf.beat_schedule = {
    "process-outbox": {
        "task": "app.workers.tasks.process_outbox_messages",
        "schedule": float(settings.OUTBOX_POLL_SECONDS),
    },
    "reconcile-wallets-hourly": {
        "task": "app.workers.tasks.reconcile_wallets",
        "schedule": crontab(minute="15"),
    },
    # Quiet hours in the local timezone
    "cleanup-sent-messages-nightly": {
        "task": "app.workers.tasks.cleanup_old_messages",
        "schedule": crontab(hour="3", minute="30"),
        "kwargs": {"days": settings.OUTBOX_RETENTION_DAYS},
    },
}

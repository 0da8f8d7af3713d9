from celery import Celery

from cabinet.config import settings

celery = Celery(
    "cabinet",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "dispatch-notification-outbox": {
            "task": "dispatch_notification_outbox",
            "schedule": float(settings.notification_sweep_seconds),
        },
    },
)

celery.autodiscover_tasks(["cabinet.notifications"])

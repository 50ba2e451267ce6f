"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Serialization and timezone settings
- Beat schedule for the schedule poller
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "workflow_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.schedule_poller.*": {"queue": "triggers"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # A tick waits for the runs it started; allow a full run timeout
    task_soft_time_limit=int(settings.RUN_TIMEOUT_SECONDS) + 60,
    task_time_limit=int(settings.RUN_TIMEOUT_SECONDS) + 120,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    beat_schedule={
        "poll-schedules": {
            "task": "worker.tasks.schedule_poller.poll_schedules",
            "schedule": settings.SCHEDULE_POLL_INTERVAL_SECONDS,
            "options": {"queue": "triggers"},
        },
    },

    include=[
        "worker.tasks.schedule_poller",
    ],
)

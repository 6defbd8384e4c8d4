"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Separate queues for execution and scheduling
- Beat schedule for the scheduler tick and the pending-execution sweep
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "hr_workflows",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.workflow.*": {"queue": "workflows"},
        "worker.tasks.scheduler.*": {"queue": "scheduler"},
    },
    task_default_queue="workflows",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=settings.WORKER_TASK_SOFT_TIME_LIMIT,
    task_time_limit=settings.WORKER_TASK_TIME_LIMIT,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "run-scheduler-tick": {
            "task": "worker.tasks.scheduler.run_scheduler_tick",
            "schedule": float(settings.SCHEDULER_INTERVAL_SECONDS),
            "options": {"queue": "scheduler"},
        },
        "process-pending-executions": {
            "task": "worker.tasks.workflow.process_pending_executions",
            "schedule": crontab(minute="*/1"),
            "options": {"queue": "workflows"},
        },
    },

    include=[
        "worker.tasks.workflow",
        "worker.tasks.scheduler",
    ],
)

"""
Celery Application Configuration
"""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "loyalty_accrual",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# A sweep waits for the workers it started, so the hard limit covers one
# full worker deadline plus the lease margin
_TASK_TIME_LIMIT = int(settings.ACCRUAL_WORKER_DEADLINE_SECONDS) + settings.ACCRUAL_LEASE_MARGIN_SECONDS

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=_TASK_TIME_LIMIT,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # orders left NEW/PROCESSING by a crash, a restart or an expired deadline
    "sweep-pending-orders": {
        "task": "app.workers.tasks.sweep_pending_orders",
        "schedule": settings.RECONCILE_SWEEP_INTERVAL_SECONDS,
        # a slow sweep must not pile up behind itself
        "options": {"expires": settings.RECONCILE_SWEEP_INTERVAL_SECONDS},
    },
}

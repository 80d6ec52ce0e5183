"""
Celery worker for hold expiry, stay completion and guest e-mail.

Start with beat enabled so the periodic sweeps run::

    celery -A hotel_reservation_engine.tasks.celery_app worker --beat
"""

import asyncio

from celery import Celery
from ..config import get_settings

settings = get_settings()

celery_app = Celery(
    "hotel_reservation_engine",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "hotel_reservation_engine.tasks.booking_tasks",
        "hotel_reservation_engine.tasks.notification_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Sweeps and e-mails are short; anything past these limits is stuck
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,
    beat_schedule={
        "expire-unpaid-bookings": {
            "task": "expire_unpaid_bookings_task",
            "schedule": 60.0,
        },
        "complete-finished-stays": {
            "task": "complete_finished_stays_task",
            "schedule": 3600.0,
        },
    },
)


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop inside a worker."""
    return asyncio.run(coro)

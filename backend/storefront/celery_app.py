from __future__ import annotations

import logging

from celery import Celery

from storefront.core.config import settings

logger = logging.getLogger(__name__)

BROKER_CONFIGURED = bool(settings.CELERY_BROKER_URL)

celery_app = Celery("storefront", include=["storefront.tasks.maintenance"])

if BROKER_CONFIGURED:
    broker_url = settings.CELERY_BROKER_URL
else:
    broker_url = "memory://"
    logger.warning("CELERY_BROKER_URL is not configured; Celery will run in in-memory mode.")

celery_app.conf.update(
    broker_url=broker_url,
    result_backend=None,
    task_default_queue="maintenance",
    task_serializer="json",
    accept_content=["json"],
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_connection_retry_on_startup=True,
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "cleanup-expired-refresh-tokens": {
            "task": "maintenance.cleanup_expired_refresh_tokens",
            "schedule": settings.REFRESH_TOKEN_CLEANUP_INTERVAL_MINUTES * 60.0,
        },
    },
)


def enqueue(task, *args, **kwargs):
    """
    Without a broker (tests, local dev) tasks run inline.
    """
    if BROKER_CONFIGURED:
        return task.delay(*args, **kwargs)
    logger.info("Celery broker not configured; running %s synchronously", task.name)
    return task.apply(args=args, kwargs=kwargs)

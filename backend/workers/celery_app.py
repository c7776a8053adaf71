from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "session_gate",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="maintenance",
    task_queues=(Queue("maintenance"),),
    task_routes={
        "workers.tasks.purge_expired_revocations": {"queue": "maintenance"},
    },
    beat_schedule={
        "revocation-purge": {
            "task": "workers.tasks.purge_expired_revocations",
            "schedule": schedule(float(settings.revocation_purge_interval_seconds)),
            "options": {"queue": "maintenance"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])

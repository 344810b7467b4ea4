from celery import Celery

from app.core.config import get_settings

settings = get_settings()

# Use computed properties or fallback to REDIS_URL
broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
result_backend = settings.CELERY_RESULT_BACKEND or settings.REDIS_URL

celery_app = Celery(
    "marketplace",
    broker=broker_url,
    backend=result_backend,
    include=["app.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    beat_schedule={
        "expire-stale-transactions": {
            "task": "expire_stale_transactions",
            "schedule": float(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
        },
    },
)

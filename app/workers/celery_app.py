from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "audio_jobs",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.celery_task_always_eager,
)

celery_app.conf.beat_schedule = {
    "reap-stalled-jobs": {
        "task": "app.workers.tasks.reap_stalled_jobs",
        "schedule": float(settings.job_reaper_interval_seconds),
    },
    "cleanup-old-jobs-daily": {
        "task": "app.workers.tasks.cleanup_old_jobs_task",
        "schedule": crontab(hour=2, minute=0),
    },
}

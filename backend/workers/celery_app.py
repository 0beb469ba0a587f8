"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "pointledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.point_calc_timezone,
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.point_calc.*": {"queue": "points"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Catch-up pass over new/edited sale and return documents.
        # Overlapping runs are skipped by the run lock, not queued.
        "process-point-documents": {
            "task": "workers.point_calc.process_point_documents",
            "schedule": crontab(
                minute=settings.point_calc_cron_minute,
                hour=settings.point_calc_cron_hour,
            ),
            "options": {"queue": "points"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])

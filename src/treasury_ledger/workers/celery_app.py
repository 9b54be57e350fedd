from celery import Celery

from treasury_ledger.config import settings

celery_app = Celery("treasury_ledger", broker=settings.redis_url, backend=settings.redis_url)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    # One cycle at a time; the monitor is a single sequential worker
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "monitor-cycle": {
            "task": "monitor_cycle",
            "schedule": float(settings.monitor_interval_seconds),
        },
    },
)

celery_app.autodiscover_tasks(["treasury_ledger.workers"])

from __future__ import annotations

from celery import Celery, signals
from kombu import Queue

from app.core.config import settings
from app.core.logging import setup_logging


celery_app = Celery("cart-recovery")

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
    task_default_queue=settings.CELERY_TASK_DEFAULT_QUEUE,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.task_queues = (
    Queue(settings.CELERY_TASK_DEFAULT_QUEUE),
    Queue(settings.RECOVERY_QUEUE),
)

celery_app.conf.task_routes = {
    "recovery.*": {"queue": settings.RECOVERY_QUEUE},
}

# El scan es poll/batch: beat lo dispara cada N minutos.
celery_app.conf.beat_schedule = {
    "cart-recovery-scan": {
        "task": "recovery.scan",
        "schedule": settings.RECOVERY_SCAN_INTERVAL_MINUTES * 60.0,
        "options": {"queue": settings.RECOVERY_QUEUE},
    },
}

celery_app.autodiscover_tasks(["app"])


@signals.setup_logging.connect
def _configure_worker_logging(**_):
    setup_logging()

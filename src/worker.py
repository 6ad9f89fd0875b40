"""
Celery application.

Beat drives the escrow funding sweep; the worker shares logging and Sentry
setup with the API process.

    celery -A src.worker worker --beat --loglevel=info
"""
from celery import Celery

from src.core.config import settings
from src.core.logging import configure_logging
from src.core.sentry import init_sentry

configure_logging()
init_sentry()

TASK_MODULES = ["src.tasks.escrow"]

celery_app = Celery("sparkbid", broker=settings.celery_broker_url, backend=settings.celery_result_backend)
celery_app.conf.include = TASK_MODULES

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1
# A sweep handles at most a page of jobs; anything slower is stuck
celery_app.conf.task_soft_time_limit = 4 * 60
celery_app.conf.task_time_limit = 5 * 60
celery_app.conf.result_expires = 60 * 60

celery_app.conf.beat_schedule = {
    "expire-pending-funding": {
        "task": "src.tasks.escrow.expire_pending_funding",
        "schedule": settings.escrow_sweep_interval_seconds,
        # A missed tick is covered by the next one
        "options": {"expires": settings.escrow_sweep_interval_seconds},
    },
}

# filevault/celery_app.py

import logging

from celery import Celery
from celery.signals import task_failure

from filevault.config import settings

logger = logging.getLogger(__name__)

celery = Celery(
    "filevault",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

# Retain connection retry behaviour at startup
celery.conf.broker_connection_retry_on_startup = True

# All processing steps share one queue
celery.conf.task_default_queue = settings.task_queue_name
celery.conf.task_routes = {
    "filevault.tasks.*": {"queue": settings.task_queue_name},
}

# Redis emulates priorities with one list per step; 0 is the highest
celery.conf.broker_transport_options = {
    "priority_steps": list(range(10)),
    "sep": ":",
    "queue_order_strategy": "priority",
}
celery.conf.task_default_priority = 5

# A task is acknowledged only after it ran, so a crashed worker's task is redelivered
celery.conf.task_acks_late = True
celery.conf.task_reject_on_worker_lost = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.worker_concurrency = settings.worker_concurrency

celery.conf.task_serializer = "json"
celery.conf.result_serializer = "json"
celery.conf.accept_content = ["json"]


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, **kw):
    """Log every task failure with the file it concerned."""
    file_id = (kwargs or {}).get("file_id", "N/A")
    task_name = sender.name if sender else "Unknown"
    logger.error(f"Task {task_name} [{task_id}] failed for file {file_id}: {exception}")

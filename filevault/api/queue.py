"""
Queue monitoring API endpoints.

Reports the processing backlog from Redis, worker activity from the Celery
inspect API, and completed/failed step counts from the database.
"""

import logging
from typing import Any

import redis
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from filevault.auth import get_auth_context
from filevault.config import settings
from filevault.database import get_db
from filevault.utils.api_keys import AuthContext
from filevault.utils.step_manager import STATUS_FAILURE, STATUS_SUCCESS, count_steps_by_status

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/queue", tags=["queue"])

# Must match broker_transport_options["priority_steps"] / ["sep"] in celery_app
PRIORITY_STEPS = range(10)
PRIORITY_SEP = ":"


def _priority_queue_names(queue_name: str) -> list[str]:
    """Redis lists backing one Celery queue; priority 0 uses the bare name."""
    return [queue_name] + [f"{queue_name}{PRIORITY_SEP}{p}" for p in PRIORITY_STEPS if p]


def _get_redis_queue_length(redis_client: redis.Redis, queue_name: str) -> int:
    """Get the number of messages waiting in a Redis-backed Celery queue.

    Args:
        redis_client: Connected Redis client instance.
        queue_name: Name of the Celery queue to inspect.

    Returns:
        Number of messages (tasks) waiting in the queue, across all priorities.
    """
    total = 0
    for name in _priority_queue_names(queue_name):
        try:
            total += redis_client.llen(name)
        except redis.RedisError:
            logger.debug(f"Could not read queue length for '{name}'")
    return total


def _get_celery_inspect_stats() -> dict[str, Any]:
    """Query the Celery inspect API for active tasks and online workers.

    Returns:
        Dictionary with ``active`` (task count) and ``workers_online``.
    """
    from filevault.celery_app import celery

    result: dict[str, Any] = {"active": 0, "workers_online": 0}
    try:
        inspector = celery.control.inspect(timeout=2.0)
        active = inspector.active() or {}
        result["workers_online"] = len(active)
        result["active"] = sum(len(tasks) for tasks in active.values())
    except Exception as exc:
        logger.warning(f"Celery inspect failed (workers may be offline): {exc}")
    return result


def get_waiting_count() -> int:
    try:
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        try:
            return _get_redis_queue_length(redis_client, settings.task_queue_name)
        finally:
            redis_client.close()
    except redis.RedisError as exc:
        logger.warning(f"Could not connect to Redis: {exc}")
        return 0


@router.get("/stats")
def get_queue_stats(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Processing queue statistics.

    Returns:
        ``{"queue", "waiting", "active", "completed", "failed", "workers_online"}``
        where completed/failed count processing steps.
    """
    celery_stats = _get_celery_inspect_stats()
    step_counts = count_steps_by_status(db)
    return {
        "queue": settings.task_queue_name,
        "waiting": get_waiting_count(),
        "active": celery_stats["active"],
        "completed": step_counts.get(STATUS_SUCCESS, 0),
        "failed": step_counts.get(STATUS_FAILURE, 0),
        "workers_online": celery_stats["workers_online"],
    }

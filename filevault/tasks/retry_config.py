#!/usr/bin/env python3
"""Retry configuration for file processing tasks.

Provides :class:`BaseTaskWithRetry`, a Celery task base class that retries
with exponential backoff and optional ±20 % jitter, and
:class:`FileTaskWithRetry`, the base every processing step runs on.  Once a
step has used up its retries, :meth:`FileTaskWithRetry.on_failure` reports
the permanent failure to the pipeline.

Usage::

    from filevault.tasks.retry_config import FileTaskWithRetry

    @celery.task(base=FileTaskWithRetry, bind=True, step_name="validate")
    def validate_file(self, file_id, organization_id, ...):
        ...
"""

import logging
import random
from typing import Any

from celery import Task

from filevault.config import settings
from filevault.exceptions import FileValidationError
from filevault.utils.logging import reset_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

#: Default per-retry countdowns in seconds.
DEFAULT_RETRY_DELAYS: list[int] = [1, 2, 4]


def _parse_delay_string(value: str) -> list[int]:
    """Parse a comma-separated string of integers, e.g. ``"1,2,4"``."""
    return [int(v.strip()) for v in value.split(",") if v.strip()]


def compute_countdown(
    retries: int,
    base_delays: list[int] | None = None,
    jitter: bool = True,
) -> int:
    """Compute the countdown in seconds for the next retry attempt.

    When all defined delays are exhausted the last delay is doubled for each
    additional attempt.  An optional ±20 % jitter is then applied.

    Args:
        retries: Current retry count (0 = first retry).
        base_delays: Per-retry base countdowns; ``None`` uses
            :data:`DEFAULT_RETRY_DELAYS`.
        jitter: Apply ±20 % random jitter.

    Returns:
        Countdown in seconds (minimum 1 s).

    Examples::

        >>> compute_countdown(0, [1, 2, 4], jitter=False)
        1
        >>> compute_countdown(4, [1, 2, 4], jitter=False)  # beyond list
        16
    """
    delays = base_delays if base_delays is not None else DEFAULT_RETRY_DELAYS

    if not delays:
        base = 1
    elif retries < len(delays):
        base = delays[retries]
    else:
        extra = retries - len(delays) + 1
        base = delays[-1] * (2**extra)

    if jitter:
        # not cryptographic
        base = round(base * (1.0 + random.uniform(-0.2, 0.2)))  # noqa: S311

    return max(base, 1)


def _settings_retry_delays() -> list[int] | None:
    raw = settings.task_retry_delays
    if isinstance(raw, list):
        return [int(v) for v in raw]
    if isinstance(raw, str) and raw.strip():
        return _parse_delay_string(raw)
    return None


class BaseTaskWithRetry(Task):
    """Celery task base class with exponential backoff and optional jitter.

    Override class attributes to customise the policy:

    * ``max_retries`` - retry attempts after the first run.
    * ``retry_delays`` - per-retry countdowns; ``None`` reads
      ``TASK_RETRY_DELAYS`` from settings, then :data:`DEFAULT_RETRY_DELAYS`.
    * ``retry_jitter`` - add ±20 % jitter; default ``True``.
    """

    autoretry_for = (Exception,)
    max_retries: int = settings.task_max_retries
    retry_kwargs: dict = {"max_retries": max_retries}
    retry_delays: list[int] | None = None
    retry_jitter: bool = True

    def retry(
        self,
        args: Any = None,
        kwargs: Any = None,
        exc: BaseException | None = None,
        throw: bool = True,
        eta: Any = None,
        countdown: int | None = None,
        max_retries: int | None = None,
        **options: Any,
    ) -> Any:
        """Retry the task, injecting the backoff countdown when not supplied."""
        if countdown is None and eta is None:
            countdown = compute_countdown(
                retries=self.request.retries,
                base_delays=self._effective_retry_delays(),
                jitter=self.retry_jitter,
            )
            logger.debug(
                "Retry %d/%d for task %s in %d s",
                self.request.retries + 1,
                max_retries if max_retries is not None else self.max_retries,
                self.name,
                countdown,
            )

        return super().retry(
            args=args,
            kwargs=kwargs,
            exc=exc,
            throw=throw,
            eta=eta,
            countdown=countdown,
            max_retries=max_retries,
            **options,
        )

    def _effective_retry_delays(self) -> list[int]:
        """Class attribute first, then settings, then :data:`DEFAULT_RETRY_DELAYS`."""
        if self.retry_delays is not None:
            return self.retry_delays
        return _settings_retry_delays() or DEFAULT_RETRY_DELAYS


class FileTaskWithRetry(BaseTaskWithRetry):
    """Base for the per-file processing steps.

    Every task is called with the keyword arguments built by
    :func:`filevault.utils.pipeline.build_task_kwargs` and declares the step it
    implements through ``step_name``.  A :class:`FileValidationError` is a
    verdict about the stored bytes and is never retried.
    """

    dont_autoretry_for = (FileValidationError,)
    step_name: str = ""

    def __call__(self, *args, **kwargs):
        # Worker log lines carry the correlation id of the originating request
        token = set_correlation_id(kwargs.get("correlation_id"))
        try:
            return super().__call__(*args, **kwargs)
        finally:
            reset_correlation_id(token)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Called once, after the final attempt has failed."""
        from filevault.utils.pipeline import fail_step

        kwargs = kwargs or {}
        file_id = kwargs.get("file_id")
        organization_id = kwargs.get("organization_id")
        logger.error(f"[{task_id}] Step {self.step_name} gave up for file {file_id}: {exc}")
        if file_id and organization_id:
            fail_step(
                file_id,
                organization_id,
                self.step_name,
                error=str(exc) or exc.__class__.__name__,
                correlation_id=kwargs.get("correlation_id"),
            )

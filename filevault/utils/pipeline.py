"""
Processing pipeline coordination.

The enqueue half runs inside an API request on the request's session.  The
completion half runs inside Celery workers, each call on a fresh
``SessionLocal`` session, and is safe under duplicate delivery and any order
of task completion:

* a task's contribution is merged into the file row together with its step
  success, in one commit;
* after every commit the worker re-checks whether all required steps have
  succeeded and, if so, attempts the PROCESSING -> PROCESSED transition.
  Only the worker whose compare-and-swap wins writes the ``processed`` audit
  entry.
"""

import logging
from typing import Any, Optional

from kombu.exceptions import KombuError
from sqlalchemy.orm import Session

from filevault.config import settings
from filevault.database import SessionLocal
from filevault.exceptions import QueueUnavailableError
from filevault.models import AuditAction, FileRecord, FileStatus
from filevault.utils.audit import SYSTEM_ACTOR, record_audit_event
from filevault.utils.file_registry import merge_file_fields, transition_status
from filevault.utils.step_manager import (
    initialize_file_steps,
    is_required_step,
    mark_step_failed,
    mark_step_started,
    mark_step_succeeded,
    required_steps_succeeded,
    steps_for_mime_type,
)

logger = logging.getLogger(__name__)

# Required steps go first; lower number = higher priority on the broker
STEP_PRIORITIES = {
    "validate": 1,
    "generate-checksum": 2,
    "extract-metadata": 3,
    "generate-thumbnail": 4,
}


def _step_tasks() -> dict:
    # Imported lazily; the task modules import this one
    from filevault.tasks.extract_metadata import extract_metadata
    from filevault.tasks.generate_checksum import generate_checksum
    from filevault.tasks.generate_thumbnail import generate_thumbnail
    from filevault.tasks.validate_file import validate_file

    return {
        "validate": validate_file,
        "generate-checksum": generate_checksum,
        "extract-metadata": extract_metadata,
        "generate-thumbnail": generate_thumbnail,
    }


def build_task_kwargs(record: FileRecord, correlation_id: Optional[str] = None) -> dict[str, Any]:
    """Everything a task needs to locate the object and the record."""
    return {
        "file_id": record.id,
        "organization_id": record.organization_id,
        "bucket": record.bucket,
        "key": record.key,
        "mime_type": record.mime_type,
        "correlation_id": correlation_id,
    }


def enqueue_file_processing(db: Session, record: FileRecord, correlation_id: Optional[str] = None) -> list[str]:
    """
    Move an UPLOADED file to PROCESSING and publish one task per processing step.

    The status flips before publishing so that no worker can observe the file
    outside PROCESSING.  If the broker stays unreachable after the publish
    retries, the file is rolled back to UPLOADED and may be retried later.

    Returns:
        Names of the steps published; empty if the file was no longer UPLOADED.

    Raises:
        QueueUnavailableError: the broker rejected the publish and the file was
            rolled back to UPLOADED.  If the steps already published moved the
            file on before the roll-back, nothing is raised.
    """
    if not transition_status(db, record.id, record.organization_id, [FileStatus.UPLOADED], FileStatus.PROCESSING):
        logger.info(f"File {record.id} is no longer UPLOADED; nothing to enqueue")
        return []

    step_names = steps_for_mime_type(record.mime_type)
    initialize_file_steps(db, record.id, step_names)

    tasks = _step_tasks()
    kwargs = build_task_kwargs(record, correlation_id)
    retry_policy = {
        "max_retries": settings.enqueue_max_retries,
        "interval_start": 0,
        "interval_step": 0.5,
        "interval_max": settings.enqueue_interval_max,
    }
    published: list[str] = []
    try:
        for step_name in step_names:
            tasks[step_name].apply_async(
                kwargs=kwargs,
                queue=settings.task_queue_name,
                priority=STEP_PRIORITIES[step_name],
                retry=True,
                retry_policy=retry_policy,
            )
            published.append(step_name)
    except (KombuError, OSError) as exc:
        logger.error(f"Failed to enqueue processing for file {record.id}: {exc}")
        if transition_status(db, record.id, record.organization_id, [FileStatus.PROCESSING], FileStatus.UPLOADED):
            raise QueueUnavailableError() from exc
        # Steps published before the failure already moved the file on
        logger.warning(
            f"File {record.id} left PROCESSING before the roll-back; keeping its state "
            f"(published: {', '.join(published) or 'none'})"
        )
        return published

    logger.info(f"Enqueued {len(step_names)} processing steps for file {record.id} ({', '.join(step_names)})")
    return step_names


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------


def load_file(file_id: str, organization_id: str) -> Optional[FileRecord]:
    """Detached snapshot of a file row, deleted ones included."""
    with SessionLocal() as db:
        record = (
            db.query(FileRecord)
            .filter(FileRecord.id == file_id, FileRecord.organization_id == organization_id)
            .one_or_none()
        )
        if record is not None:
            db.expunge(record)
        return record


def start_step(file_id: str, step_name: str) -> None:
    with SessionLocal() as db:
        mark_step_started(db, file_id, step_name)


def try_finalize(db: Session, file_id: str, organization_id: str, correlation_id: Optional[str] = None) -> bool:
    """
    Transition PROCESSING -> PROCESSED once every required step has succeeded.

    The extracted metadata is folded into the tenant metadata under
    ``"processing"``.  Returns True only for the caller that won the transition.
    """
    if not required_steps_succeeded(db, file_id):
        return False

    record = (
        db.query(FileRecord)
        .filter(FileRecord.id == file_id, FileRecord.organization_id == organization_id)
        .one_or_none()
    )
    if record is None or record.status != FileStatus.PROCESSING.value:
        return False

    metadata = dict(record.file_metadata or {})
    if record.extracted_metadata:
        metadata["processing"] = record.extracted_metadata

    won = transition_status(
        db,
        file_id,
        organization_id,
        [FileStatus.PROCESSING],
        FileStatus.PROCESSED,
        file_metadata=metadata,
        checksum=record.checksum,
    )
    if won:
        record_audit_event(
            db,
            organization_id,
            AuditAction.PROCESSED,
            SYSTEM_ACTOR,
            file_id=file_id,
            correlation_id=correlation_id,
            details={"checksum": record.checksum},
        )
    return won


def complete_step(
    file_id: str,
    organization_id: str,
    step_name: str,
    correlation_id: Optional[str] = None,
    **fields: Any,
) -> bool:
    """
    Persist a step's result and its success together, then attempt completion.

    Returns:
        True if this call moved the file to PROCESSED.
    """
    with SessionLocal() as db:
        # Step row first: creating a missing row commits on its own
        mark_step_succeeded(db, file_id, step_name, commit=False)
        merge_file_fields(db, file_id, organization_id, commit=False, **fields)
        db.commit()
        logger.info(f"Step {step_name} succeeded for file {file_id}")
        return try_finalize(db, file_id, organization_id, correlation_id)


def fail_step(
    file_id: str,
    organization_id: str,
    step_name: str,
    error: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> bool:
    """
    Record a step whose retries are exhausted.

    A required step fails the file; an optional one is only logged.

    Returns:
        True if this call moved the file to FAILED.
    """
    with SessionLocal() as db:
        if not mark_step_failed(db, file_id, step_name, error):
            logger.info(f"Ignoring failure of step {step_name} for file {file_id}; it already succeeded")
            return False

        if not is_required_step(step_name):
            logger.warning(f"Optional step {step_name} failed for file {file_id}: {error}")
            return False

        won = transition_status(db, file_id, organization_id, [FileStatus.PROCESSING], FileStatus.FAILED)
        if won:
            logger.error(f"File {file_id} failed processing at step {step_name}: {error}")
            record_audit_event(
                db,
                organization_id,
                AuditAction.PROCESSING_FAILED,
                SYSTEM_ACTOR,
                file_id=file_id,
                correlation_id=correlation_id,
                details={"step": step_name, "error": error},
            )
        return won


def mark_invalid(file_id: str, organization_id: str) -> None:
    """Flag a file whose stored bytes contradict its record."""
    with SessionLocal() as db:
        merge_file_fields(db, file_id, organization_id, is_valid=False)

"""
Utility functions for managing file processing step status.

Every processing task of a file owns one FileProcessingStep row.  Updates are
conditional so that results merge commutatively: a ``success`` is sticky and is
never overwritten by a later failure of a duplicate delivery, and completion is
decided by counting successful required steps rather than by arrival order.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from filevault.models import FileProcessingStep, utcnow
from filevault.utils.allowed_types import is_image

logger = logging.getLogger(__name__)

VALIDATE_STEP = "validate"
CHECKSUM_STEP = "generate-checksum"
EXTRACT_METADATA_STEP = "extract-metadata"
THUMBNAIL_STEP = "generate-thumbnail"

# A file is PROCESSED once every one of these has succeeded at least once
REQUIRED_STEPS = (VALIDATE_STEP, CHECKSUM_STEP, EXTRACT_METADATA_STEP)

# Best-effort steps; their failure never fails the file
OPTIONAL_STEPS = (THUMBNAIL_STEP,)

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


def is_required_step(step_name: str) -> bool:
    return step_name in REQUIRED_STEPS


def steps_for_mime_type(mime_type: Optional[str]) -> List[str]:
    """Steps to fan out for a file; thumbnails only for images."""
    steps = list(REQUIRED_STEPS)
    if mime_type and is_image(mime_type):
        steps.append(THUMBNAIL_STEP)
    return steps


def _step_query(db: Session, file_id: str, step_name: str):
    return db.query(FileProcessingStep).filter(
        FileProcessingStep.file_id == file_id, FileProcessingStep.step_name == step_name
    )


def _ensure_step(db: Session, file_id: str, step_name: str) -> None:
    """
    Create the step row if it does not exist yet, tolerating a concurrent insert.

    Commits on its own, so it must run before the caller stages other changes.
    """
    if _step_query(db, file_id, step_name).first() is not None:
        return
    try:
        db.add(FileProcessingStep(file_id=file_id, step_name=step_name, status=STATUS_PENDING))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(f"Step {step_name} for file {file_id} was created concurrently")


def initialize_file_steps(db: Session, file_id: str, step_names: Iterable[str]) -> None:
    """
    Create pending rows for the given steps.

    Rows left over from an earlier, rolled-back enqueue keep their successes;
    anything else is reset to pending.
    """
    names = list(step_names)
    for step_name in names:
        _ensure_step(db, file_id, step_name)

    (
        db.query(FileProcessingStep)
        .filter(
            FileProcessingStep.file_id == file_id,
            FileProcessingStep.step_name.in_(names),
            FileProcessingStep.status != STATUS_SUCCESS,
        )
        .update(
            {
                FileProcessingStep.status: STATUS_PENDING,
                FileProcessingStep.error_message: None,
                FileProcessingStep.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()


def mark_step_started(db: Session, file_id: str, step_name: str) -> None:
    """Count an attempt and flag the step in progress unless it already succeeded."""
    _ensure_step(db, file_id, step_name)
    now = utcnow()
    _step_query(db, file_id, step_name).filter(FileProcessingStep.status != STATUS_SUCCESS).update(
        {
            FileProcessingStep.status: STATUS_IN_PROGRESS,
            FileProcessingStep.attempts: FileProcessingStep.attempts + 1,
            FileProcessingStep.started_at: now,
            FileProcessingStep.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()


def mark_step_succeeded(db: Session, file_id: str, step_name: str, commit: bool = True) -> None:
    _ensure_step(db, file_id, step_name)
    now = utcnow()
    _step_query(db, file_id, step_name).update(
        {
            FileProcessingStep.status: STATUS_SUCCESS,
            FileProcessingStep.error_message: None,
            FileProcessingStep.completed_at: now,
            FileProcessingStep.updated_at: now,
        },
        synchronize_session=False,
    )
    if commit:
        db.commit()


def mark_step_failed(db: Session, file_id: str, step_name: str, error_message: Optional[str] = None) -> bool:
    """
    Record a permanent failure of a step.

    Returns:
        True if the step is now failed, False if it had already succeeded.
    """
    _ensure_step(db, file_id, step_name)
    now = utcnow()
    updated = (
        _step_query(db, file_id, step_name)
        .filter(FileProcessingStep.status != STATUS_SUCCESS)
        .update(
            {
                FileProcessingStep.status: STATUS_FAILURE,
                FileProcessingStep.error_message: (error_message or "")[:2000] or None,
                FileProcessingStep.completed_at: now,
                FileProcessingStep.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def required_steps_succeeded(db: Session, file_id: str) -> bool:
    succeeded = (
        db.query(func.count(FileProcessingStep.id))
        .filter(
            FileProcessingStep.file_id == file_id,
            FileProcessingStep.step_name.in_(REQUIRED_STEPS),
            FileProcessingStep.status == STATUS_SUCCESS,
        )
        .scalar()
    )
    return succeeded == len(REQUIRED_STEPS)


def get_file_step_status(db: Session, file_id: str) -> Dict[str, Dict]:
    """
    Get the current status of all processing steps for a file.

    Returns:
        Dictionary mapping step_name to status info:
        {
            "validate": {
                "status": "success",
                "attempts": 1,
                "started_at": datetime,
                "completed_at": datetime,
                "error_message": None
            },
            ...
        }
    """
    steps = db.query(FileProcessingStep).filter(FileProcessingStep.file_id == file_id).all()
    return {
        step.step_name: {
            "status": step.status,
            "attempts": step.attempts,
            "started_at": step.started_at,
            "completed_at": step.completed_at,
            "error_message": step.error_message,
        }
        for step in steps
    }


def count_steps_by_status(db: Session) -> Dict[str, int]:
    rows = db.query(FileProcessingStep.status, func.count(FileProcessingStep.id)).group_by(FileProcessingStep.status)
    return {status: count for status, count in rows.all()}

#!/usr/bin/env python3

import logging

from filevault.celery_app import celery
from filevault.exceptions import FileValidationError
from filevault.tasks.retry_config import FileTaskWithRetry
from filevault.utils.pipeline import complete_step, load_file, mark_invalid, start_step
from filevault.utils.step_manager import VALIDATE_STEP
from filevault.utils.storage import get_storage

logger = logging.getLogger(__name__)


def _normalize_content_type(value):
    return (value or "").split(";")[0].strip().lower()


@celery.task(base=FileTaskWithRetry, bind=True, step_name=VALIDATE_STEP)
def validate_file(
    self,
    file_id: str,
    organization_id: str,
    bucket: str,
    key: str,
    mime_type: str,
    correlation_id: str = None,
):
    """
    Confirm the stored object matches what the client declared.

    A missing object raises and is retried (the PUT may not be visible yet).
    A size or content-type mismatch marks the file invalid and fails the step
    without further retries.
    """
    task_id = self.request.id
    record = load_file(file_id, organization_id)
    if record is None:
        logger.warning(f"[{task_id}] File {file_id} no longer exists; skipping validation")
        return {"file_id": file_id, "step": VALIDATE_STEP, "skipped": True}

    start_step(file_id, VALIDATE_STEP)
    logger.info(f"[{task_id}] Validating s3://{bucket}/{key}")

    head = get_storage().head_object(key, bucket=bucket)
    actual_size = head.get("ContentLength")
    actual_type = _normalize_content_type(head.get("ContentType"))

    problems = []
    if actual_size != record.file_size:
        problems.append(f"size {actual_size} != declared {record.file_size}")
    if actual_type and actual_type != _normalize_content_type(mime_type):
        problems.append(f"content type {actual_type} != declared {mime_type}")

    if problems:
        mark_invalid(file_id, organization_id)
        raise FileValidationError(f"Stored object does not match upload: {'; '.join(problems)}")

    complete_step(file_id, organization_id, VALIDATE_STEP, correlation_id, is_valid=True)
    logger.info(f"[{task_id}] File {file_id} is valid ({actual_size} bytes)")
    return {"file_id": file_id, "step": VALIDATE_STEP, "is_valid": True, "size": actual_size}

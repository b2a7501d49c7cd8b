#!/usr/bin/env python3

import hashlib
import logging

from filevault.celery_app import celery
from filevault.tasks.retry_config import FileTaskWithRetry
from filevault.utils.pipeline import complete_step, start_step
from filevault.utils.step_manager import CHECKSUM_STEP
from filevault.utils.storage import get_storage

logger = logging.getLogger(__name__)


@celery.task(base=FileTaskWithRetry, bind=True, step_name=CHECKSUM_STEP)
def generate_checksum(
    self,
    file_id: str,
    organization_id: str,
    bucket: str,
    key: str,
    mime_type: str,
    correlation_id: str = None,
):
    """Stream the stored object and record its SHA-256."""
    task_id = self.request.id
    start_step(file_id, CHECKSUM_STEP)

    sha256 = hashlib.sha256()
    total = 0
    for chunk in get_storage().iter_object_chunks(key, bucket=bucket):
        sha256.update(chunk)
        total += len(chunk)
    checksum = sha256.hexdigest()

    logger.info(f"[{task_id}] Checksum for file {file_id}: {checksum[:12]}... ({total} bytes)")
    complete_step(file_id, organization_id, CHECKSUM_STEP, correlation_id, checksum=checksum)
    return {"file_id": file_id, "step": CHECKSUM_STEP, "checksum": checksum}

#!/usr/bin/env python3

import logging
from datetime import datetime, timezone

import fitz  # PyMuPDF

from filevault.celery_app import celery
from filevault.config import settings
from filevault.tasks.retry_config import FileTaskWithRetry
from filevault.utils.pipeline import complete_step, start_step
from filevault.utils.step_manager import EXTRACT_METADATA_STEP
from filevault.utils.storage import get_storage

logger = logging.getLogger(__name__)

# MIME types PyMuPDF can open, mapped to the filetype hint it expects
DOCUMENT_FILETYPES = {
    "application/pdf": "pdf",
    "image/jpeg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def describe_document(data: bytes, mime_type: str) -> dict:
    """Page count and first-page dimensions of a PDF or image, empty if unreadable."""
    filetype = DOCUMENT_FILETYPES.get(mime_type)
    if not filetype or not data:
        return {}
    try:
        with fitz.open(stream=data, filetype=filetype) as doc:
            info = {"page_count": doc.page_count}
            if doc.page_count:
                rect = doc[0].rect
                info["width"] = round(rect.width, 2)
                info["height"] = round(rect.height, 2)
            return info
    except (RuntimeError, ValueError) as exc:
        logger.warning(f"Could not open {mime_type} content with PyMuPDF: {exc}")
        return {}


@celery.task(base=FileTaskWithRetry, bind=True, step_name=EXTRACT_METADATA_STEP)
def extract_metadata(
    self,
    file_id: str,
    organization_id: str,
    bucket: str,
    key: str,
    mime_type: str,
    correlation_id: str = None,
):
    """Collect object and document metadata for the file."""
    task_id = self.request.id
    start_step(file_id, EXTRACT_METADATA_STEP)

    storage = get_storage()
    head = storage.head_object(key, bucket=bucket)
    extracted = {
        "processing_version": settings.processing_version,
        "extracted_at": datetime.now(timezone.utc).isoformat(),
        "mime_type": mime_type,
        "content_length": head.get("ContentLength"),
        "etag": (head.get("ETag") or "").strip('"') or None,
    }
    if mime_type in DOCUMENT_FILETYPES:
        extracted.update(describe_document(storage.read_object(key, bucket=bucket), mime_type))

    logger.info(f"[{task_id}] Extracted metadata for file {file_id}: {sorted(extracted)}")
    complete_step(file_id, organization_id, EXTRACT_METADATA_STEP, correlation_id, extracted_metadata=extracted)
    return {"file_id": file_id, "step": EXTRACT_METADATA_STEP, "metadata": extracted}

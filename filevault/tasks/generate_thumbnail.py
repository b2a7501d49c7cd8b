#!/usr/bin/env python3

import logging

import fitz  # PyMuPDF

from filevault.celery_app import celery
from filevault.config import settings
from filevault.tasks.retry_config import FileTaskWithRetry
from filevault.utils.pipeline import complete_step, start_step
from filevault.utils.step_manager import THUMBNAIL_STEP
from filevault.utils.storage import get_storage

logger = logging.getLogger(__name__)


def thumbnail_key_for(organization_id: str, file_id: str) -> str:
    return f"{organization_id}/{file_id}/thumbnails/thumbnail.png"


def render_thumbnail(data: bytes, mime_type: str, max_size: int) -> bytes:
    """Render the first page/frame scaled to fit a ``max_size`` square, as PNG."""
    filetype = mime_type.split("/", 1)[-1]
    with fitz.open(stream=data, filetype=filetype) as doc:
        page = doc[0]
        longest = max(page.rect.width, page.rect.height) or 1
        zoom = min(max_size / longest, 1.0)
        pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pix.tobytes("png")


@celery.task(base=FileTaskWithRetry, bind=True, step_name=THUMBNAIL_STEP)
def generate_thumbnail(
    self,
    file_id: str,
    organization_id: str,
    bucket: str,
    key: str,
    mime_type: str,
    correlation_id: str = None,
):
    """Store a PNG preview next to an image upload. Failure never fails the file."""
    task_id = self.request.id
    start_step(file_id, THUMBNAIL_STEP)

    storage = get_storage()
    png = render_thumbnail(storage.read_object(key, bucket=bucket), mime_type, settings.thumbnail_max_size)
    thumb_key = thumbnail_key_for(organization_id, file_id)
    storage.put_object(thumb_key, png, "image/png", bucket=bucket)

    logger.info(f"[{task_id}] Stored thumbnail for file {file_id} at {thumb_key} ({len(png)} bytes)")
    complete_step(file_id, organization_id, THUMBNAIL_STEP, correlation_id, thumbnail_key=thumb_key)
    return {"file_id": file_id, "step": THUMBNAIL_STEP, "thumbnail_key": thumb_key}

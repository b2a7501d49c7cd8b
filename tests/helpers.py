"""
Builders shared by the FileVault test modules.
"""

from typing import Optional

TEST_BUCKET = "test-bucket"


def store_object(storage, key: str, data: bytes, content_type: str) -> None:
    """Seed the in-memory storage broker from ``conftest.storage``."""
    storage.objects[key] = (data, content_type)


def make_pdf_bytes(pages: int = 1, width: float = 612, height: float = 792) -> bytes:
    """A real PDF produced by PyMuPDF."""
    import fitz

    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=width, height=height)
    data = doc.tobytes()
    doc.close()
    return data


def make_png_bytes(width: int = 64, height: int = 32) -> bytes:
    import fitz

    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.set_rect(pix.irect, (200, 30, 30))
    return pix.tobytes("png")


def create_pending_file(
    db_session,
    organization_id: str,
    filename: str = "report.pdf",
    mime_type: str = "application/pdf",
    data: Optional[bytes] = None,
    storage=None,
    metadata: Optional[dict] = None,
):
    """Insert a PENDING_UPLOAD record (and optionally its stored bytes)."""
    from filevault.utils.file_registry import create_file_record

    data = data if data is not None else b"%PDF-1.4 test"
    record = create_file_record(
        db_session,
        organization_id=organization_id,
        bucket=TEST_BUCKET,
        key=f"{organization_id}/pending/{filename}",
        original_filename=filename,
        mime_type=mime_type,
        file_size=len(data),
        metadata=metadata,
    )
    if storage is not None:
        store_object(storage, record.key, data, mime_type)
    return record


def task_kwargs(record, correlation_id: Optional[str] = None) -> dict:
    from filevault.utils.pipeline import build_task_kwargs

    return build_task_kwargs(record, correlation_id)

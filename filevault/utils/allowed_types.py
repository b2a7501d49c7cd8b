"""
Canonical list of content types FileVault accepts for upload.

This module is the single source of truth consumed by:

  - filevault/utils/input_validation.py (upload request validation)
  - filevault/utils/step_manager.py (which files get a thumbnail)
"""

# ---------------------------------------------------------------------------
# Document / data MIME types
# ---------------------------------------------------------------------------
DOCUMENT_MIME_TYPES: set[str] = {
    "application/pdf",
    "text/csv",
    "text/plain",
    "application/json",
    # Excel
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

# ---------------------------------------------------------------------------
# Image MIME types (these also get a thumbnail)
# ---------------------------------------------------------------------------
IMAGE_MIME_TYPES: set[str] = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
}

# ---------------------------------------------------------------------------
# Combined set - every MIME type accepted by the upload endpoint
# ---------------------------------------------------------------------------
ALLOWED_MIME_TYPES: set[str] = DOCUMENT_MIME_TYPES | IMAGE_MIME_TYPES


def is_image(mime_type: str) -> bool:
    return mime_type.split(";")[0].strip().lower() in IMAGE_MIME_TYPES

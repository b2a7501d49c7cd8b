"""
Centralized validation of upload requests and other client input.

Every validator raises :class:`filevault.exceptions.ValidationError` with a
message naming the offending field, so the API layer can report it verbatim.
"""

import logging
import os
from typing import Any, Optional

from filevault.config import settings
from filevault.exceptions import ValidationError
from filevault.utils.allowed_types import ALLOWED_MIME_TYPES

logger = logging.getLogger(__name__)

# Characters that never belong in a stored filename
_FORBIDDEN_FILENAME_CHARS = frozenset('\x00/\\')


def validate_filename(filename: Optional[str]) -> str:
    """
    Validate a client-supplied filename and reduce it to its base name.

    Returns:
        The base name, stripped of surrounding whitespace.

    Raises:
        ValidationError: If the name is empty, too long, or contains path separators
            or control characters after reduction.
    """
    if filename is None or not filename.strip():
        raise ValidationError("Filename is required")
    name = os.path.basename(filename.replace("\\", "/")).strip()
    if not name or name in {".", ".."}:
        raise ValidationError("Filename is required")
    if len(name) > settings.max_filename_length:
        raise ValidationError(f"Filename must be at most {settings.max_filename_length} characters")
    if any(ch in _FORBIDDEN_FILENAME_CHARS or ord(ch) < 32 for ch in name):
        logger.warning(f"Rejected filename with control characters: {filename!r}")
        raise ValidationError("Filename contains invalid characters")
    return name


def validate_content_type(content_type: Optional[str]) -> str:
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Content type '{content_type}' is not allowed",
            {"allowed_types": sorted(ALLOWED_MIME_TYPES)},
        )
    return normalized


def validate_file_size(size: Any) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise ValidationError("File size must be an integer number of bytes")
    if size <= 0:
        raise ValidationError("File size must be greater than 0")
    if size > settings.max_file_size:
        raise ValidationError(
            f"File size exceeds maximum of {settings.max_file_size} bytes",
            {"max_size": settings.max_file_size},
        )
    return size


def validate_tags(tags: Optional[list]) -> list[str]:
    """Check tag count and length; duplicates are dropped preserving order."""
    if not tags:
        return []
    if len(tags) > settings.max_tags:
        raise ValidationError(f"At most {settings.max_tags} tags are allowed")
    cleaned: list[str] = []
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError("Tags must be non-empty strings")
        tag = tag.strip()
        if len(tag) > settings.max_tag_length:
            raise ValidationError(f"Tag '{tag[:20]}...' exceeds {settings.max_tag_length} characters")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def validate_metadata(metadata: Optional[dict]) -> dict[str, Any]:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationError("Metadata must be an object")
    if "processing" in metadata:
        raise ValidationError("Metadata key 'processing' is reserved")
    return dict(metadata)

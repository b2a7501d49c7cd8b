"""
File registry: the single source of truth for a file's lifecycle state.

The registry is mutated in exactly two ways:

* :func:`transition_status` - a compare-and-swap on the ``status`` column.
  The UPDATE only matches while the persisted status is still one of the
  expected pre-states, so two racing callers (possibly on different service
  instances) can never both win.
* :func:`merge_file_fields` - a column-level partial update used by the
  processing tasks.  Each task owns its own columns, so concurrent task
  completions merge without clobbering one another.

Every query is scoped by ``organization_id``; a record of another tenant is
indistinguishable from a missing one.
"""

import logging
import math
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from filevault.models import FileRecord, FileStatus, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[FileStatus, frozenset] = {
    FileStatus.PENDING_UPLOAD: frozenset({FileStatus.UPLOADED, FileStatus.FAILED, FileStatus.DELETED}),
    FileStatus.UPLOADED: frozenset({FileStatus.PROCESSING, FileStatus.FAILED, FileStatus.DELETED}),
    # PROCESSING -> UPLOADED only rolls back a failed enqueue
    FileStatus.PROCESSING: frozenset(
        {FileStatus.PROCESSED, FileStatus.FAILED, FileStatus.DELETED, FileStatus.UPLOADED}
    ),
    FileStatus.PROCESSED: frozenset({FileStatus.DELETED}),
    FileStatus.FAILED: frozenset({FileStatus.DELETED}),
    FileStatus.DELETED: frozenset(),
}

# States from which a download URL may be issued (bytes are known to exist)
DOWNLOADABLE_STATUSES = frozenset({FileStatus.UPLOADED, FileStatus.PROCESSED})

# Columns the processing tasks are allowed to write
MERGEABLE_FIELDS = frozenset({"is_valid", "checksum", "extracted_metadata", "thumbnail_key"})

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _as_status(value: FileStatus | str) -> FileStatus:
    return value if isinstance(value, FileStatus) else FileStatus(value)


def can_transition(from_status: FileStatus | str, to_status: FileStatus | str) -> bool:
    return _as_status(to_status) in ALLOWED_TRANSITIONS[_as_status(from_status)]


def create_file_record(
    db: Session,
    organization_id: str,
    bucket: str,
    key: str,
    original_filename: str,
    mime_type: str,
    file_size: int,
    uploaded_by: Optional[str] = None,
    tags: Optional[list[str]] = None,
    metadata: Optional[dict[str, Any]] = None,
    file_id: Optional[str] = None,
) -> FileRecord:
    """Insert a new record in ``PENDING_UPLOAD``."""
    record = FileRecord(
        organization_id=organization_id,
        bucket=bucket,
        key=key,
        original_filename=original_filename,
        mime_type=mime_type,
        file_size=file_size,
        uploaded_by=uploaded_by,
        tags=list(tags or []),
        file_metadata=dict(metadata or {}),
        status=FileStatus.PENDING_UPLOAD.value,
    )
    if file_id:
        record.id = file_id
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get_file(db: Session, file_id: str, organization_id: str, include_deleted: bool = False) -> Optional[FileRecord]:
    """Fetch one file of one tenant; deleted files are invisible unless asked for."""
    query = db.query(FileRecord).filter(FileRecord.id == file_id, FileRecord.organization_id == organization_id)
    if not include_deleted:
        query = query.filter(FileRecord.status != FileStatus.DELETED.value)
    return query.one_or_none()


def list_files(
    db: Session,
    organization_id: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    status: Optional[FileStatus | str] = None,
) -> tuple[list[FileRecord], dict[str, int]]:
    """
    Page through a tenant's files, newest first.

    Deleted files are never listed, not even when ``status`` asks for them.

    Returns:
        Tuple of (records, pagination) where pagination holds
        ``page``, ``page_size``, ``total_items`` and ``total_pages``.
    """
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    if status is not None and _as_status(status) == FileStatus.DELETED:
        return [], {"page": page, "page_size": page_size, "total_items": 0, "total_pages": 0}

    query = db.query(FileRecord).filter(FileRecord.organization_id == organization_id)
    if status is not None:
        query = query.filter(FileRecord.status == _as_status(status).value)
    else:
        query = query.filter(FileRecord.status != FileStatus.DELETED.value)

    total = query.count()
    records = (
        query.order_by(FileRecord.created_at.desc(), FileRecord.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    pagination = {
        "page": page,
        "page_size": page_size,
        "total_items": total,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }
    return records, pagination


def transition_status(
    db: Session,
    file_id: str,
    organization_id: str,
    from_statuses: Iterable[FileStatus | str],
    to_status: FileStatus | str,
    **fields: Any,
) -> bool:
    """
    Atomically move a file to ``to_status`` if it is still in one of ``from_statuses``.

    Extra keyword arguments are written in the same UPDATE statement.

    Returns:
        True if this call performed the transition, False if the record was
        missing, belongs to another tenant, or was no longer in an expected state.

    Raises:
        ValueError: if any requested edge is not part of the state machine.
    """
    target = _as_status(to_status)
    sources = {_as_status(s) for s in from_statuses}
    if not sources:
        raise ValueError("At least one source status is required")
    for source in sources:
        if target not in ALLOWED_TRANSITIONS[source]:
            raise ValueError(f"Illegal file transition {source.value} -> {target.value}")

    values: dict[str, Any] = dict(fields)
    values["status"] = target.value
    values["updated_at"] = utcnow()

    updated = (
        db.query(FileRecord)
        .filter(
            FileRecord.id == file_id,
            FileRecord.organization_id == organization_id,
            FileRecord.status.in_([s.value for s in sources]),
        )
        .update(values, synchronize_session=False)
    )
    db.commit()

    if updated == 1:
        logger.info(f"File {file_id}: {'/'.join(sorted(s.value for s in sources))} -> {target.value}")
        return True
    logger.debug(f"File {file_id}: transition to {target.value} not applied (precondition no longer holds)")
    return False


def merge_file_fields(db: Session, file_id: str, organization_id: str, commit: bool = True, **fields: Any) -> bool:
    """
    Write only the given task-owned columns of a file, whatever its status.

    Returns:
        True if the record exists for this tenant.
    """
    unknown = set(fields) - MERGEABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable by processing tasks: {', '.join(sorted(unknown))}")
    if not fields:
        return True

    values: dict[str, Any] = dict(fields)
    values["updated_at"] = utcnow()
    updated = (
        db.query(FileRecord)
        .filter(FileRecord.id == file_id, FileRecord.organization_id == organization_id)
        .update(values, synchronize_session=False)
    )
    if commit:
        db.commit()
    return updated == 1


def serialize_file(record: FileRecord) -> dict[str, Any]:
    """Public representation of a file (no storage locator internals beyond the key)."""
    return {
        "id": record.id,
        "original_filename": record.original_filename,
        "mime_type": record.mime_type,
        "size": int(record.file_size) if record.file_size is not None else None,
        "checksum": record.checksum,
        "status": record.status,
        "tags": list(record.tags or []),
        "metadata": record.file_metadata or {},
        "key": record.key,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }

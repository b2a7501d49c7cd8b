#!/usr/bin/env python3
"""
Service boundary for tenant file operations.

:class:`FileGateway` is the only entry point the HTTP layer uses for files.
Each operation checks the caller's permission, scopes every lookup by the
caller's organization, performs its state change, and only then appends the
audit entry.  A file of another tenant is reported exactly like a missing one.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from filevault.config import Settings
from filevault.config import settings as default_settings
from filevault.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from filevault.models import AuditAction, FileRecord, FileStatus, Permission
from filevault.utils import file_registry
from filevault.utils.api_keys import AuthContext, authorize
from filevault.utils.audit import get_file_audit_logs, record_audit_event, serialize_audit_entry
from filevault.utils.input_validation import (
    validate_content_type,
    validate_file_size,
    validate_filename,
    validate_metadata,
    validate_tags,
)
from filevault.utils.pipeline import enqueue_file_processing
from filevault.utils.storage import StorageBroker, get_storage

logger = logging.getLogger(__name__)

# Every state a live (visible) file can be in
LIVE_STATUSES = [s for s in FileStatus if s != FileStatus.DELETED]


class FileGateway:
    def __init__(
        self,
        db: Session,
        storage: Optional[StorageBroker] = None,
        settings: Optional[Settings] = None,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.db = db
        self._storage = storage
        self.settings = settings or default_settings
        self.client_ip = client_ip
        self.user_agent = user_agent

    @property
    def storage(self) -> StorageBroker:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def request_upload(
        self,
        ctx: AuthContext,
        filename: str,
        content_type: str,
        size: int,
        tags: Optional[list] = None,
        metadata: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Register a new file and hand out a pre-signed PUT URL for its bytes.

        Returns:
            ``{"file_id", "upload_url", "key", "expires_at"}``.
        """
        authorize(ctx, Permission.UPLOAD)
        filename = validate_filename(filename)
        content_type = validate_content_type(content_type)
        size = validate_file_size(size)
        tags = validate_tags(tags)
        metadata = validate_metadata(metadata)

        file_id = uuid.uuid4().hex
        key = f"{ctx.organization_id}/{file_id}/{filename}"
        presigned = self.storage.create_upload_url(key, content_type, content_length=size)

        file_registry.create_file_record(
            self.db,
            organization_id=ctx.organization_id,
            bucket=self.storage.bucket,
            key=key,
            original_filename=filename,
            mime_type=content_type,
            file_size=size,
            uploaded_by=ctx.api_key_id,
            tags=tags,
            metadata=metadata,
            file_id=file_id,
        )
        self._audit(
            ctx,
            AuditAction.UPLOAD_REQUESTED,
            file_id,
            correlation_id,
            {"filename": filename, "content_type": content_type, "size": size},
        )
        logger.info(f"Upload requested for file {file_id} ({content_type}, {size} bytes) by org {ctx.organization_id}")
        return {
            "file_id": file_id,
            "upload_url": presigned.url,
            "key": key,
            "expires_at": presigned.expires_at.isoformat(),
        }

    def confirm_upload(self, ctx: AuthContext, file_id: str, correlation_id: Optional[str] = None) -> dict[str, Any]:
        """
        Mark the bytes as uploaded and start processing.

        Raises:
            NotFoundError: unknown file, deleted, or another tenant's.
            InvalidStateError: the file is past ``PENDING_UPLOAD``.
            ConflictError: a concurrent confirmation won.
            QueueUnavailableError: processing could not be enqueued; the file
                stays ``UPLOADED`` and can be retried.
        """
        authorize(ctx, Permission.UPLOAD)
        record = self._require_file(ctx, file_id)
        if record.status != FileStatus.PENDING_UPLOAD.value:
            raise InvalidStateError(f"File is already in {record.status} state", record.status)

        if not file_registry.transition_status(
            self.db, file_id, ctx.organization_id, [FileStatus.PENDING_UPLOAD], FileStatus.UPLOADED
        ):
            raise ConflictError("File was modified by a concurrent request", {"file_id": file_id})

        self._audit(ctx, AuditAction.UPLOADED, file_id, correlation_id)
        self.db.refresh(record)
        enqueue_file_processing(self.db, record, correlation_id)
        return self._reload(ctx, file_id)

    def retry_processing(self, ctx: AuthContext, file_id: str, correlation_id: Optional[str] = None) -> dict[str, Any]:
        """Re-enqueue a file whose earlier enqueue failed."""
        authorize(ctx, Permission.UPLOAD)
        record = self._require_file(ctx, file_id)
        if record.status != FileStatus.UPLOADED.value:
            raise InvalidStateError(
                f"Processing can only be retried for UPLOADED files, file is {record.status}", record.status
            )

        if not enqueue_file_processing(self.db, record, correlation_id):
            raise ConflictError("File was modified by a concurrent request", {"file_id": file_id})
        self._audit(ctx, AuditAction.PROCESSING_RETRIED, file_id, correlation_id)
        return self._reload(ctx, file_id)

    # ------------------------------------------------------------------
    # Read / download / delete
    # ------------------------------------------------------------------

    def get_file(self, ctx: AuthContext, file_id: str, correlation_id: Optional[str] = None) -> dict[str, Any]:
        authorize(ctx, Permission.READ)
        record = self._require_file(ctx, file_id)
        self._audit(ctx, AuditAction.ACCESSED, file_id, correlation_id)
        return file_registry.serialize_file(record)

    def list_files(
        self,
        ctx: AuthContext,
        page: int = 1,
        page_size: int = file_registry.DEFAULT_PAGE_SIZE,
        status: Optional[str] = None,
    ) -> dict[str, Any]:
        authorize(ctx, Permission.READ)
        if status is not None:
            try:
                status = FileStatus(status.upper())
            except ValueError:
                status = None
            if status not in LIVE_STATUSES:
                raise ValidationError("Unknown status filter", {"allowed": [s.value for s in LIVE_STATUSES]})
        records, pagination = file_registry.list_files(
            self.db, ctx.organization_id, page=page, page_size=page_size, status=status
        )
        return {"files": [file_registry.serialize_file(r) for r in records], "pagination": pagination}

    def request_download(self, ctx: AuthContext, file_id: str, correlation_id: Optional[str] = None) -> dict[str, Any]:
        """
        Hand out a pre-signed GET URL.

        Only files whose bytes are known to exist (``UPLOADED`` or
        ``PROCESSED``) are eligible; the broker is not contacted otherwise.
        """
        authorize(ctx, Permission.READ)
        record = self._require_file(ctx, file_id)
        if FileStatus(record.status) not in file_registry.DOWNLOADABLE_STATUSES:
            raise InvalidStateError(f"File is not available for download in {record.status} state", record.status)

        presigned = self.storage.create_download_url(record.key, filename=record.original_filename)
        self._audit(ctx, AuditAction.DOWNLOAD_REQUESTED, file_id, correlation_id)
        return {
            "download_url": presigned.url,
            "expires_at": presigned.expires_at.isoformat(),
            "filename": record.original_filename,
        }

    def delete_file(self, ctx: AuthContext, file_id: str, correlation_id: Optional[str] = None) -> None:
        """Soft-delete a file. Losing a race against another delete still counts as success."""
        authorize(ctx, Permission.DELETE)
        record = self._require_file(ctx, file_id)
        previous = record.status

        won = file_registry.transition_status(
            self.db, file_id, ctx.organization_id, LIVE_STATUSES, FileStatus.DELETED
        )
        if won:
            self._audit(ctx, AuditAction.DELETED, file_id, correlation_id, {"previous_status": previous})
        else:
            logger.info(f"File {file_id} was deleted concurrently")

    def get_file_audit_logs(self, ctx: AuthContext, file_id: str, limit: int = 100) -> list[dict[str, Any]]:
        authorize(ctx, Permission.READ)
        self._require_file(ctx, file_id)
        entries = get_file_audit_logs(self.db, file_id, ctx.organization_id, limit=limit)
        return [serialize_audit_entry(e) for e in entries]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_file(self, ctx: AuthContext, file_id: str) -> FileRecord:
        record = file_registry.get_file(self.db, file_id, ctx.organization_id)
        if record is None:
            raise NotFoundError("File", file_id)
        return record

    def _reload(self, ctx: AuthContext, file_id: str) -> dict[str, Any]:
        self.db.expire_all()
        record = file_registry.get_file(self.db, file_id, ctx.organization_id)
        if record is None:
            raise NotFoundError("File", file_id)
        return file_registry.serialize_file(record)

    def _audit(
        self,
        ctx: AuthContext,
        action: AuditAction,
        file_id: Optional[str],
        correlation_id: Optional[str],
        details: Optional[dict] = None,
    ) -> None:
        record_audit_event(
            self.db,
            ctx.organization_id,
            action,
            ctx.api_key_id,
            file_id=file_id,
            correlation_id=correlation_id,
            details=details,
            ip_address=self.client_ip,
            user_agent=self.user_agent,
        )

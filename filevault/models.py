#!/usr/bin/env python3

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from filevault.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(str, enum.Enum):
    PENDING_UPLOAD = "PENDING_UPLOAD"
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    DELETED = "DELETED"


class Permission(str, enum.Enum):
    UPLOAD = "upload"
    READ = "read"
    DELETE = "delete"
    ADMIN = "admin"


class AuditAction(str, enum.Enum):
    UPLOAD_REQUESTED = "upload_requested"
    UPLOADED = "uploaded"
    DOWNLOAD_REQUESTED = "download_requested"
    PROCESSED = "processed"
    PROCESSING_FAILED = "processing_failed"
    PROCESSING_RETRIED = "processing_retried"
    DELETED = "deleted"
    ACCESSED = "accessed"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    api_keys = relationship("ApiKey", back_populates="organization")


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(String(32), primary_key=True, default=_new_id)
    organization_id = Column(String(32), ForeignKey("organizations.id"), nullable=False, index=True)

    # Public, displayable part of the key (e.g. "fv_1a2b3c4d")
    key_prefix = Column(String(16), nullable=False)

    # SHA-256 of the raw key; the raw key itself is never stored
    hashed_key = Column(String(64), nullable=False, unique=True, index=True)

    name = Column(String(255), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    organization = relationship("Organization", back_populates="api_keys")


class FileRecord(Base):
    __tablename__ = "files"

    id = Column(String(32), primary_key=True, default=_new_id)

    # Owning tenant; every query on this table is scoped by it
    organization_id = Column(String(32), ForeignKey("organizations.id"), nullable=False, index=True)

    # Opaque locator in the blob store
    bucket = Column(String(255), nullable=False)
    key = Column(String(1024), nullable=False)

    original_filename = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)

    # Declared size in bytes
    file_size = Column(BigInteger, nullable=False)

    # SHA-256 of the stored object, filled in by the pipeline
    checksum = Column(String(64), nullable=True)

    status = Column(String(32), nullable=False, default=FileStatus.PENDING_UPLOAD.value, index=True)
    tags = Column(JSON, nullable=False, default=list)

    # Tenant-supplied metadata, augmented once processing completes.
    # "metadata" is reserved on declarative classes, hence the attribute name.
    file_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # Per-task contributions, each written by exactly one task
    is_valid = Column(Boolean, nullable=True)
    extracted_metadata = Column(JSON, nullable=True)
    thumbnail_key = Column(String(1024), nullable=True)

    uploaded_by = Column(String(32), nullable=True)  # API key id; kept after the key is revoked
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (Index("ix_files_org_status_created", "organization_id", "status", "created_at"),)


class FileProcessingStep(Base):
    """Status of one processing task for one file."""

    __tablename__ = "file_processing_steps"

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(String(32), ForeignKey("files.id"), nullable=False, index=True)
    step_name = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default="pending")  # pending/in_progress/success/failure
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("file_id", "step_name", name="uq_file_step"),)


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(String(32), nullable=True, index=True)
    organization_id = Column(String(32), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    actor = Column(String(64), nullable=False)  # API key id, or "system" for workers
    correlation_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

"""
Append-only audit trail for state-affecting actions.

Audit writes are a best-effort side effect: a failure is logged and swallowed,
never propagated to the operation the entry accompanies.  Callers commit their
primary write first and only then record the audit event, so rolling back a
failed audit insert cannot undo the primary change.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filevault.models import AuditAction, AuditLogEntry

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def record_audit_event(
    db: Session,
    organization_id: str,
    action: AuditAction | str,
    actor: str,
    file_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> bool:
    """
    Append one audit entry and commit it.

    Returns:
        True if the entry was stored, False if the write failed (already logged).
    """
    action_value = action.value if isinstance(action, AuditAction) else str(action)
    try:
        db.add(
            AuditLogEntry(
                file_id=file_id,
                organization_id=organization_id,
                action=action_value,
                actor=actor,
                correlation_id=correlation_id,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to write audit entry action={action_value} file={file_id} org={organization_id}")
        return False


def get_file_audit_logs(db: Session, file_id: str, organization_id: str, limit: int = 100) -> List[AuditLogEntry]:
    """Newest-first audit entries for one file of one tenant."""
    return (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.file_id == file_id, AuditLogEntry.organization_id == organization_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )


def get_organization_audit_logs(
    db: Session, organization_id: str, limit: int = 50, action: Optional[str] = None
) -> List[AuditLogEntry]:
    """Newest-first audit entries for a tenant, optionally filtered by action."""
    query = db.query(AuditLogEntry).filter(AuditLogEntry.organization_id == organization_id)
    if action:
        query = query.filter(AuditLogEntry.action == action)
    return query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()).limit(limit).all()


def serialize_audit_entry(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "file_id": entry.file_id,
        "action": entry.action,
        "actor": entry.actor,
        "correlation_id": entry.correlation_id,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }

"""
Tenant administration endpoints: organizations, API keys and the audit trail.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from filevault.api.common import get_correlation_id
from filevault.auth import require_permission
from filevault.database import get_db
from filevault.models import AuditAction, Permission
from filevault.utils import api_keys
from filevault.utils.api_keys import AuthContext
from filevault.utils.audit import get_organization_audit_logs, record_audit_event, serialize_audit_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class OrganizationCreate(BaseModel):
    name: str = Field(..., description="Organization display name (min 2 characters)")


class ApiKeyCreate(BaseModel):
    name: str = Field(..., description="Label shown in key listings")
    permissions: Optional[list[str]] = Field(default=None, description="Subset of upload/read/delete/admin")
    expires_at: Optional[datetime] = Field(default=None, description="Optional expiry (ISO 8601)")


def _issued_key_response(issued: api_keys.IssuedApiKey) -> dict:
    return {
        "id": issued.id,
        "key": issued.key,
        "prefix": issued.prefix,
        "name": issued.name,
        "permissions": issued.permissions,
        "expires_at": issued.expires_at.isoformat() if issued.expires_at else None,
        "created_at": issued.created_at.isoformat() if issued.created_at else None,
    }


@router.post("/organizations", status_code=status.HTTP_201_CREATED)
def create_organization(payload: OrganizationCreate, db: Session = Depends(get_db)):
    """
    Bootstrap a tenant. The response carries the initial admin key; it is
    never shown again.
    """
    organization, issued = api_keys.create_organization(db, payload.name)
    return {
        "organization": {
            "id": organization.id,
            "name": organization.name,
            "created_at": organization.created_at.isoformat() if organization.created_at else None,
        },
        "api_key": _issued_key_response(issued),
    }


@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: ApiKeyCreate,
    request: Request,
    ctx: AuthContext = Depends(require_permission(Permission.ADMIN)),
    db: Session = Depends(get_db),
):
    issued = api_keys.create_api_key(
        db, ctx.organization_id, payload.name, payload.permissions, expires_at=payload.expires_at
    )
    record_audit_event(
        db,
        ctx.organization_id,
        AuditAction.API_KEY_CREATED,
        ctx.api_key_id,
        correlation_id=get_correlation_id(request),
        details={"key_id": issued.id, "prefix": issued.prefix, "permissions": issued.permissions},
    )
    return _issued_key_response(issued)


@router.get("/api-keys")
def list_api_keys(
    ctx: AuthContext = Depends(require_permission(Permission.ADMIN)),
    db: Session = Depends(get_db),
):
    return {"api_keys": [api_keys.serialize_api_key(k) for k in api_keys.list_api_keys(db, ctx.organization_id)]}


@router.delete("/api-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_api_key(
    key_id: str,
    request: Request,
    ctx: AuthContext = Depends(require_permission(Permission.ADMIN)),
    db: Session = Depends(get_db),
):
    api_keys.revoke_api_key(db, ctx.organization_id, key_id, ctx.api_key_id)
    record_audit_event(
        db,
        ctx.organization_id,
        AuditAction.API_KEY_REVOKED,
        ctx.api_key_id,
        correlation_id=get_correlation_id(request),
        details={"key_id": key_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/audit-logs")
def list_audit_logs(
    limit: int = Query(50, ge=1, le=500),
    action: Optional[str] = Query(None),
    ctx: AuthContext = Depends(require_permission(Permission.ADMIN)),
    db: Session = Depends(get_db),
):
    entries = get_organization_audit_logs(db, ctx.organization_id, limit=limit, action=action)
    return {"entries": [serialize_audit_entry(e) for e in entries]}

"""
API key credential store and the authentication / authorization checks built on it.

A raw key looks like ``fv_<64 hex chars>``.  Only its SHA-256 digest is
persisted, together with a short public prefix used for display.  The raw key
is returned exactly once, from :func:`create_api_key`; a lost key can only be
revoked and replaced.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filevault.config import settings
from filevault.database import SessionLocal
from filevault.exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from filevault.models import ApiKey, Organization, Permission, utcnow

logger = logging.getLogger(__name__)

# Raw key prefix plus the first 8 random hex characters
DISPLAY_PREFIX_LENGTH = 11

VALID_PERMISSIONS = frozenset(p.value for p in Permission)
DEFAULT_KEY_PERMISSIONS = [Permission.READ.value]
ADMIN_KEY_PERMISSIONS = [p.value for p in Permission]

MIN_ORGANIZATION_NAME_LENGTH = 2


@dataclass(frozen=True)
class AuthContext:
    """Authorization context for the remainder of one request."""

    organization_id: str
    api_key_id: str
    permissions: frozenset = field(default_factory=frozenset)
    organization_name: Optional[str] = None


@dataclass(frozen=True)
class IssuedApiKey:
    """The only object that ever carries a raw key."""

    id: str
    key: str
    prefix: str
    name: str
    permissions: List[str]
    expires_at: Optional[datetime]
    created_at: datetime


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """Return ``(raw_key, display_prefix, hashed_key)`` for a fresh random key."""
    raw_key = f"{settings.api_key_prefix}{secrets.token_hex(32)}"
    return raw_key, raw_key[:DISPLAY_PREFIX_LENGTH], hash_api_key(raw_key)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_permissions(permissions: Optional[Iterable[str]]) -> List[str]:
    """Validate a requested permission set, defaulting to read-only."""
    if not permissions:
        return list(DEFAULT_KEY_PERMISSIONS)
    requested = list(dict.fromkeys(str(p) for p in permissions))
    unknown = [p for p in requested if p not in VALID_PERMISSIONS]
    if unknown:
        raise ValidationError(
            f"Unknown permissions: {', '.join(unknown)}",
            {"allowed": sorted(VALID_PERMISSIONS)},
        )
    return requested


def create_api_key(
    db: Session,
    organization_id: str,
    name: str,
    permissions: Optional[Iterable[str]] = None,
    expires_at: Optional[datetime] = None,
) -> IssuedApiKey:
    """Create and persist a key for an organization, returning the raw key once."""
    if not name or not name.strip():
        raise ValidationError("API key name is required")
    perms = normalize_permissions(permissions)
    expires_at = _as_utc(expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError("API key expiry must be in the future")

    raw_key, prefix, hashed = generate_api_key()
    api_key = ApiKey(
        organization_id=organization_id,
        key_prefix=prefix,
        hashed_key=hashed,
        name=name.strip(),
        permissions=perms,
        expires_at=expires_at,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)

    logger.info(f"Created API key {prefix}... ({api_key.id}) for organization {organization_id}")
    return IssuedApiKey(
        id=api_key.id,
        key=raw_key,
        prefix=prefix,
        name=api_key.name,
        permissions=perms,
        expires_at=expires_at,
        created_at=api_key.created_at,
    )


def create_organization(db: Session, name: str) -> tuple[Organization, IssuedApiKey]:
    """Create a tenant together with its initial admin key."""
    name = (name or "").strip()
    if len(name) < MIN_ORGANIZATION_NAME_LENGTH:
        raise ValidationError(f"Organization name is required (min {MIN_ORGANIZATION_NAME_LENGTH} characters)")

    organization = Organization(name=name)
    db.add(organization)
    db.commit()
    db.refresh(organization)

    issued = create_api_key(db, organization.id, "Default Admin Key", ADMIN_KEY_PERMISSIONS)
    logger.info(f"Created organization '{name}' ({organization.id})")
    return organization, issued


def touch_last_used(db: Session, api_key_id: str) -> None:
    """
    Best-effort side effect: stamp ``last_used_at`` on a key.

    Failures are logged and swallowed; losing the update is acceptable.
    """
    try:
        db.query(ApiKey).filter(ApiKey.id == api_key_id).update(
            {ApiKey.last_used_at: utcnow()}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(f"Could not update last_used_at for API key {api_key_id}: {exc}")


def record_key_usage(api_key_id: str) -> None:
    """Stamp ``last_used_at`` from a fresh session, for use after the response is sent."""
    with SessionLocal() as db:
        touch_last_used(db, api_key_id)


def authenticate(db: Session, raw_key: Optional[str], record_usage: bool = True) -> AuthContext:
    """
    Resolve a raw bearer key into an :class:`AuthContext`.

    With ``record_usage=False`` the caller is responsible for stamping
    ``last_used_at`` (see :func:`record_key_usage`).

    Raises:
        AuthenticationError: missing, malformed, unknown or expired key.
    """
    if not raw_key:
        raise AuthenticationError("API key required. Provide X-API-Key header.")
    if not raw_key.startswith(settings.api_key_prefix):
        # Obviously malformed; never reaches the store
        raise AuthenticationError("Invalid or expired API key.")

    api_key = db.query(ApiKey).filter(ApiKey.hashed_key == hash_api_key(raw_key)).one_or_none()
    if api_key is None:
        raise AuthenticationError("Invalid or expired API key.")

    expires_at = _as_utc(api_key.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        logger.info(f"Rejected expired API key {api_key.key_prefix}...")
        raise AuthenticationError("Invalid or expired API key.")

    context = AuthContext(
        organization_id=api_key.organization_id,
        api_key_id=api_key.id,
        permissions=frozenset(api_key.permissions or []),
        organization_name=api_key.organization.name if api_key.organization else None,
    )
    if record_usage:
        touch_last_used(db, api_key.id)
    return context


def has_permission(context: AuthContext, permission: Permission | str) -> bool:
    required = permission.value if isinstance(permission, Permission) else permission
    return required in context.permissions or Permission.ADMIN.value in context.permissions


def authorize(context: AuthContext, permission: Permission | str) -> None:
    """Raise :class:`AuthorizationError` unless the context holds ``permission`` or ``admin``."""
    if not has_permission(context, permission):
        required = permission.value if isinstance(permission, Permission) else permission
        raise AuthorizationError(f"Permission '{required}' required.")


def list_api_keys(db: Session, organization_id: str) -> List[ApiKey]:
    return (
        db.query(ApiKey)
        .filter(ApiKey.organization_id == organization_id)
        .order_by(ApiKey.created_at.desc())
        .all()
    )


def revoke_api_key(db: Session, organization_id: str, key_id: str, current_key_id: str) -> None:
    """Delete a key of the caller's organization other than the one making the call."""
    if key_id == current_key_id:
        raise ValidationError("Cannot revoke the API key currently in use")

    deleted = (
        db.query(ApiKey)
        .filter(ApiKey.id == key_id, ApiKey.organization_id == organization_id)
        .delete(synchronize_session=False)
    )
    if not deleted:
        db.rollback()
        raise NotFoundError("API key", key_id)
    db.commit()
    logger.info(f"Revoked API key {key_id} of organization {organization_id}")


def serialize_api_key(api_key: ApiKey) -> dict:
    return {
        "id": api_key.id,
        "prefix": api_key.key_prefix,
        "name": api_key.name,
        "permissions": list(api_key.permissions or []),
        "expires_at": api_key.expires_at.isoformat() if api_key.expires_at else None,
        "last_used_at": api_key.last_used_at.isoformat() if api_key.last_used_at else None,
        "created_at": api_key.created_at.isoformat() if api_key.created_at else None,
    }

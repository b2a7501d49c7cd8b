#!/usr/bin/env python3
"""
FastAPI dependencies for API key authentication and permission checks.

Usage::

    @router.get("/files")
    def list_files(ctx: AuthContext = Depends(require_permission(Permission.READ))):
        ...
"""

import logging
from typing import Callable, Optional

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from filevault.database import get_db
from filevault.models import Permission
from filevault.utils.api_keys import AuthContext, authenticate, authorize, record_key_usage

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_auth_context(
    request: Request,
    background_tasks: BackgroundTasks,
    raw_key: Optional[str] = Depends(api_key_header),
    db: Session = Depends(get_db),
) -> AuthContext:
    """
    Authenticate the request's API key; the context is kept on ``request.state``.

    ``last_used_at`` is stamped after the response has been sent.
    """
    context = authenticate(db, raw_key, record_usage=False)
    background_tasks.add_task(record_key_usage, context.api_key_id)
    request.state.auth = context
    return context


def require_permission(permission: Permission) -> Callable[..., AuthContext]:
    """Dependency factory: authenticate, then require ``permission`` (or ``admin``)."""

    def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        authorize(ctx, permission)
        return ctx

    dependency.__name__ = f"require_{permission.value}"
    return dependency

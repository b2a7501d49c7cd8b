"""
Common helpers for API routes
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from filevault.config import settings
from filevault.database import get_db
from filevault.gateway import FileGateway
from filevault.middleware.request_log import get_client_ip
from filevault.utils.storage import StorageBroker, get_storage

logger = logging.getLogger(__name__)


def get_correlation_id(request: Request) -> Optional[str]:
    """Correlation id assigned by the request logging middleware."""
    return getattr(request.state, "correlation_id", None)


def get_gateway(
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBroker = Depends(get_storage),
) -> FileGateway:
    """Request-scoped gateway carrying the caller's network identity for audit entries."""
    return FileGateway(
        db,
        storage=storage,
        client_ip=get_client_ip(request) if settings.audit_log_include_client_ip else None,
        user_agent=request.headers.get("user-agent"),
    )

"""
File-related API endpoints
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field

from filevault.api.common import get_correlation_id, get_gateway
from filevault.auth import get_auth_context
from filevault.gateway import FileGateway
from filevault.utils.api_keys import AuthContext
from filevault.utils.file_registry import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


class UploadUrlRequest(BaseModel):
    filename: str = Field(..., description="Original filename; reduced to its base name")
    content_type: str = Field(..., description="MIME type the client will PUT with")
    size: int = Field(..., description="Exact size in bytes")
    tags: Optional[list[str]] = Field(default=None, description="Up to 10 tags")
    metadata: Optional[dict[str, Any]] = Field(default=None, description="Free-form tenant metadata")


@router.post("/upload-url", status_code=status.HTTP_201_CREATED)
def request_upload_url(
    payload: UploadUrlRequest,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    """
    Register a file and return a pre-signed PUT URL.

    Example response:
    {
      "file_id": "3f2a...",
      "upload_url": "https://bucket.s3.amazonaws.com/<org>/<file>/report.pdf?X-Amz-...",
      "key": "<org>/<file>/report.pdf",
      "expires_at": "2025-05-01T13:34:56.789000+00:00"
    }
    """
    return gateway.request_upload(
        ctx,
        payload.filename,
        payload.content_type,
        payload.size,
        tags=payload.tags,
        metadata=payload.metadata,
        correlation_id=get_correlation_id(request),
    )


@router.get("")
def list_files(
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    file_status: Optional[str] = Query(None, alias="status"),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    """Paginated files of the caller's organization, newest first."""
    return gateway.list_files(ctx, page=page, page_size=page_size, status=file_status)


@router.get("/{file_id}")
def get_file(
    file_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    return gateway.get_file(ctx, file_id, correlation_id=get_correlation_id(request))


@router.get("/{file_id}/download-url")
def get_download_url(
    file_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    """Pre-signed GET URL; only for UPLOADED or PROCESSED files."""
    return gateway.request_download(ctx, file_id, correlation_id=get_correlation_id(request))


@router.post("/{file_id}/confirm-upload")
def confirm_upload(
    file_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    """Tell the service the PUT finished; processing starts right away."""
    return gateway.confirm_upload(ctx, file_id, correlation_id=get_correlation_id(request))


@router.post("/{file_id}/retry-processing")
def retry_processing(
    file_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    return gateway.retry_processing(ctx, file_id, correlation_id=get_correlation_id(request))


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    gateway.delete_file(ctx, file_id, correlation_id=get_correlation_id(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{file_id}/audit-logs")
def get_file_audit_logs(
    file_id: str,
    limit: int = Query(100, ge=1, le=500),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: FileGateway = Depends(get_gateway),
):
    return {"file_id": file_id, "entries": gateway.get_file_audit_logs(ctx, file_id, limit=limit)}

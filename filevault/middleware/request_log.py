#!/usr/bin/env python3

"""
Request logging middleware for FileVault.

Logs every HTTP request with sensitive values masked, and assigns each request
a correlation id.  The id is taken from the ``X-Correlation-ID`` request header
when present (so callers can stitch their own traces together), otherwise it is
generated.  It is bound to the logging context for the duration of the request,
exposed as ``request.state.correlation_id`` and echoed in the response header.

Security-relevant events that receive elevated ``[SECURITY]`` log entries:
- Authentication failures (401 Unauthorized)
- Authorisation denials (403 Forbidden)
- Server errors (5xx responses)
"""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from filevault.utils.logging import reset_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Query-parameter names whose values must never appear in logs (case-insensitive)
_SENSITIVE_PARAM_PATTERN = re.compile(
    r"^(secret|token|access_token|api_key|apikey|key|credential|credentials|auth|authorization|"
    r"x-amz-signature|x-amz-credential|x-amz-security-token)$",
    re.IGNORECASE,
)

# Accept caller-supplied ids only if they look like ids
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def mask_query_string(query_string: str) -> str:
    """
    Replace values of sensitive query parameters with ``[REDACTED]``.

    Args:
        query_string: Raw URL query string (e.g. ``"page=2&api_key=fv_..."``).

    Returns:
        Query string with sensitive values replaced.
    """
    if not query_string:
        return query_string

    parts = []
    for pair in query_string.split("&"):
        name, sep, _value = pair.partition("=")
        if sep and _SENSITIVE_PARAM_PATTERN.match(name):
            parts.append(f"{name}=[REDACTED]")
        else:
            parts.append(pair)
    return "&".join(parts)


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the leftmost X-Forwarded-For address when present."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def resolve_correlation_id(request: Request) -> str:
    supplied = request.headers.get(CORRELATION_HEADER)
    if supplied and _CORRELATION_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex


def get_key_prefix(request: Request) -> str:
    """Displayable prefix of the presented API key, never the key itself."""
    raw = request.headers.get("x-api-key")
    return f"{raw[:11]}..." if raw else "anonymous"


class RequestLogMiddleware(BaseHTTPMiddleware):
    """
    Emit one ``[AUDIT]`` line per request plus ``[SECURITY]`` lines for
    401/403/5xx responses.

    Configuration comes from the settings object passed as ``config``
    (``audit_logging_enabled``, ``audit_log_include_client_ip``).  The
    correlation id is assigned even when logging is disabled.
    """

    def __init__(self, app, config) -> None:
        super().__init__(app)
        self.enabled = config.audit_logging_enabled
        self.include_ip = config.audit_log_include_client_ip

        if self.enabled:
            logger.info(f"Request logging middleware enabled (include_client_ip={self.include_ip})")
        else:
            logger.info("Request logging middleware disabled")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = resolve_correlation_id(request)
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        try:
            start_time = time.monotonic()
            response = await call_next(request)
            duration_ms = int((time.monotonic() - start_time) * 1000)

            response.headers[CORRELATION_HEADER] = correlation_id
            if self.enabled:
                self._log_request(request, response.status_code, duration_ms)
            return response
        finally:
            reset_correlation_id(token)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_path_with_masked_query(self, request: Request) -> str:
        path = request.url.path
        raw_query = request.url.query
        if raw_query:
            return f"{path}?{mask_query_string(raw_query)}"
        return path

    def _log_request(self, request: Request, status_code: int, duration_ms: int) -> None:
        method = request.method
        path = self._build_path_with_masked_query(request)
        caller = get_key_prefix(request)
        ip_part = f" - {get_client_ip(request)}" if self.include_ip else ""

        logger.info(f"[AUDIT] {method} {path} {status_code} {duration_ms}ms{ip_part} - {caller}")

        if status_code == 401:
            logger.warning(f"[SECURITY] AUTH_FAILURE {method} {path} 401{ip_part} - {caller}")
        elif status_code == 403:
            logger.warning(f"[SECURITY] ACCESS_DENIED {method} {path} 403{ip_part} - {caller}")
        elif status_code >= 500:
            logger.error(f"[SECURITY] SERVER_ERROR {method} {path} {status_code}{ip_part} - {caller}")

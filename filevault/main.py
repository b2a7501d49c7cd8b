#!/usr/bin/env python3
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from filevault import __version__
from filevault.api import router as api_router
from filevault.config import settings
from filevault.database import dispose_db, init_db
from filevault.exceptions import ErrorCode, FileVaultError
from filevault.middleware.request_log import RequestLogMiddleware
from filevault.utils.logging import setup_logging

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.AUTHENTICATION_ERROR,
    status.HTTP_403_FORBIDDEN: ErrorCode.AUTHORIZATION_ERROR,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.VALIDATION_ERROR,
    status.HTTP_409_CONFLICT: ErrorCode.CONFLICT,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.QUEUE_UNAVAILABLE,
}

app = FastAPI(title="FileVault", version=__version__)

app.add_middleware(RequestLogMiddleware, config=settings)
# Respect X-Forwarded-* headers from the reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.proxy_trusted_hosts)


@app.on_event("startup")
def on_startup():
    init_db()  # Create tables if they don't exist
    logger.info(f"FileVault {__version__} started (bucket={settings.s3_bucket_name}, queue={settings.task_queue_name})")


@app.on_event("shutdown")
def on_shutdown():
    logger.info("Application shutting down")
    dispose_db()


@app.exception_handler(FileVaultError)
async def filevault_error_handler(request: Request, exc: FileVaultError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Routing errors (unknown path, wrong method) in the same envelope as every other error."""
    default = ErrorCode.VALIDATION_ERROR if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR
    code = _HTTP_ERROR_CODES.get(exc.status_code, default)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code.value, "message": str(exc.detail)}},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None, "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Request validation failed",
                "details": {"errors": errors},
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.debug else "An unexpected error occurred"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": message}},
    )


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


app.include_router(api_router)

#!/usr/bin/env python3

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str
    redis_url: str

    # Expose internal error messages in API responses
    debug: bool = False
    log_level: str = "INFO"

    # S3-compatible blob store
    s3_bucket_name: str = "filevault-files"
    aws_region: Optional[str] = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_endpoint_url: Optional[str] = None  # MinIO / LocalStack

    # Pre-signed URL lifetimes (seconds)
    upload_url_expiry: int = 3600
    download_url_expiry: int = 3600
    max_url_expiry: int = 86400

    # Upload policy
    max_file_size: int = 100 * 1024 * 1024  # 100 MiB
    max_tags: int = 10
    max_tag_length: int = 50
    max_filename_length: int = 255

    # API keys
    api_key_prefix: str = "fv_"

    # Task queue
    task_queue_name: str = "file_processing"
    worker_concurrency: int = 5
    task_max_retries: int = 2  # 3 attempts in total
    task_retry_delays: Optional[str] = "1,2,4"
    enqueue_max_retries: int = 2
    enqueue_interval_max: float = 1.0

    # Processing
    processing_version: str = "1.0.0"
    thumbnail_max_size: int = 256

    # Request audit logging
    audit_logging_enabled: bool = True
    audit_log_include_client_ip: bool = True

    # Peers whose X-Forwarded-* headers are trusted (comma-separated, "*" for any)
    proxy_trusted_hosts: str = "*"

    class Config:
        env_file = ".env"


settings = Settings()

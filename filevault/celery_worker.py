#!/usr/bin/env python3

from filevault.celery_app import celery
from filevault.utils.logging import setup_logging
from filevault.config import settings

# **Ensure all tasks are imported before Celery starts**
from filevault.tasks.validate_file import validate_file
from filevault.tasks.generate_checksum import generate_checksum
from filevault.tasks.extract_metadata import extract_metadata
from filevault.tasks.generate_thumbnail import generate_thumbnail

setup_logging(settings.log_level)

__all__ = ["celery", "validate_file", "generate_checksum", "extract_metadata", "generate_thumbnail"]

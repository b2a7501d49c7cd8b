"""Celery tasks, one per file processing step."""

"""
Tests for filevault/celery_app.py

This module tests the Celery app configuration and task failure handler.
"""

import logging
from unittest.mock import MagicMock

import pytest

from filevault.celery_app import celery, task_failure_handler


@pytest.mark.unit
class TestCeleryAppConfig:
    def test_celery_instance_exists(self):
        assert celery.main == "filevault"

    def test_broker_and_backend_configured(self):
        assert celery.conf.broker_url.startswith("redis://")
        assert celery.conf.result_backend.startswith("redis://")

    def test_processing_tasks_routed_to_one_queue(self):
        assert celery.conf.task_default_queue == "file_processing"
        assert celery.conf.task_routes["filevault.tasks.*"] == {"queue": "file_processing"}

    def test_priority_levels_on_redis(self):
        options = celery.conf.broker_transport_options
        assert options["priority_steps"] == list(range(10))
        assert options["sep"] == ":"

    def test_late_acknowledgement_for_redelivery(self):
        assert celery.conf.task_acks_late is True
        assert celery.conf.task_reject_on_worker_lost is True
        assert celery.conf.worker_prefetch_multiplier == 1

    def test_json_only(self):
        assert celery.conf.task_serializer == "json"
        assert celery.conf.accept_content == ["json"]

    def test_processing_tasks_registered(self):
        import filevault.celery_worker  # noqa: F401

        for name in (
            "filevault.tasks.validate_file.validate_file",
            "filevault.tasks.generate_checksum.generate_checksum",
            "filevault.tasks.extract_metadata.extract_metadata",
            "filevault.tasks.generate_thumbnail.generate_thumbnail",
        ):
            assert name in celery.tasks


@pytest.mark.unit
class TestTaskFailureHandler:
    def test_logs_file_id(self, caplog):
        sender = MagicMock()
        sender.name = "filevault.tasks.validate_file.validate_file"

        with caplog.at_level(logging.ERROR, logger="filevault.celery_app"):
            task_failure_handler(sender=sender, task_id="t-1", exception=ValueError("bad"), kwargs={"file_id": "f-9"})

        assert "validate_file" in caplog.text
        assert "f-9" in caplog.text

    def test_handles_missing_sender_and_kwargs(self, caplog):
        with caplog.at_level(logging.ERROR, logger="filevault.celery_app"):
            task_failure_handler(task_id="t-2", exception=RuntimeError("x"))

        assert "Unknown" in caplog.text
        assert "N/A" in caplog.text

"""Tests for filevault/api/queue.py."""

from unittest.mock import MagicMock, patch

import pytest
import redis

from filevault.api.queue import (
    _get_celery_inspect_stats,
    _get_redis_queue_length,
    _priority_queue_names,
    get_waiting_count,
)


@pytest.mark.unit
class TestGetRedisQueueLength:
    def test_priority_queue_names(self):
        names = _priority_queue_names("file_processing")
        assert names[0] == "file_processing"
        assert names[1:] == [f"file_processing:{p}" for p in range(1, 10)]

    def test_sums_all_priority_lists(self):
        mock_redis = MagicMock()
        mock_redis.llen.side_effect = lambda name: {"q": 2, "q:1": 3, "q:4": 1}.get(name, 0)
        assert _get_redis_queue_length(mock_redis, "q") == 6

    def test_unreadable_list_counts_as_zero(self):
        mock_redis = MagicMock()
        mock_redis.llen.side_effect = redis.ConnectionError("Connection refused")
        assert _get_redis_queue_length(mock_redis, "q") == 0

    @patch("filevault.api.queue.redis.Redis.from_url")
    def test_waiting_count_closes_client(self, from_url):
        from_url.return_value.llen.return_value = 1
        assert get_waiting_count() == 10
        from_url.return_value.close.assert_called_once()

    @patch("filevault.api.queue.redis.Redis.from_url", side_effect=redis.ConnectionError("down"))
    def test_waiting_count_zero_when_redis_down(self, _from_url):
        assert get_waiting_count() == 0


@pytest.mark.unit
class TestGetCeleryInspectStats:
    @patch("filevault.celery_app.celery")
    def test_returns_worker_stats(self, mock_celery):
        inspector = MagicMock()
        inspector.active.return_value = {"w1@host": [{"id": "a"}, {"id": "b"}], "w2@host": []}
        mock_celery.control.inspect.return_value = inspector

        assert _get_celery_inspect_stats() == {"active": 2, "workers_online": 2}

    @patch("filevault.celery_app.celery")
    def test_offline_workers(self, mock_celery):
        mock_celery.control.inspect.side_effect = OSError("no broker")
        assert _get_celery_inspect_stats() == {"active": 0, "workers_online": 0}


@pytest.mark.integration
class TestQueueStatsEndpoint:
    def test_requires_api_key(self, client):
        response = client.get("/api/v1/queue/stats")
        assert response.status_code == 401

    @patch("filevault.api.queue.get_waiting_count", return_value=3)
    @patch("filevault.api.queue._get_celery_inspect_stats", return_value={"active": 1, "workers_online": 1})
    def test_reports_counts(self, _inspect, _waiting, client, organization, db_session):
        from filevault.utils.step_manager import mark_step_failed, mark_step_succeeded
        from tests.helpers import create_pending_file

        org, issued = organization
        done = create_pending_file(db_session, org.id, filename="a.pdf")
        broken = create_pending_file(db_session, org.id, filename="b.pdf")
        mark_step_succeeded(db_session, done.id, "validate")
        mark_step_succeeded(db_session, done.id, "generate-checksum")
        mark_step_failed(db_session, broken.id, "validate", "boom")

        response = client.get("/api/v1/queue/stats", headers={"X-API-Key": issued.key})

        assert response.status_code == 200
        assert response.json() == {
            "queue": "file_processing",
            "waiting": 3,
            "active": 1,
            "completed": 2,
            "failed": 1,
            "workers_online": 1,
        }

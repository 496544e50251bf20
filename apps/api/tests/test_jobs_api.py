"""
Integration tests for the cron-triggered job entrypoints.

Response contract:
    200 {"success": true, "affectedCount": n, "executionTimeMs": ms, ...}
    500 {"success": false, "error": "..."}
"""
from datetime import timedelta
from uuid import uuid4
from fastapi.testclient import TestClient

from main import app
from core.clock import schedule_today
from core.exceptions import TransientStoreError
from services import missed_task_sweeper
from tests.scheduling_helpers import make_instance, make_rule

client = TestClient(app)


class TestCronAuth:
    def test_missing_secret(self):
        response = client.post("/v1/jobs/mark-missed-tasks")
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_wrong_secret(self):
        response = client.post("/v1/jobs/mark-missed-tasks", headers={"X-Cron-Secret": "nope"})
        assert response.status_code == 401

    def test_user_token_is_not_a_cron_secret(self, coach_headers):
        assert client.post("/v1/jobs/reconcile", headers=coach_headers).status_code == 401

    def test_bearer_secret_accepted(self, cron_headers):
        bearer = {"Authorization": f"Bearer {cron_headers['X-Cron-Secret']}"}
        assert client.post("/v1/jobs/mark-missed-tasks", headers=bearer).status_code == 200


class TestMarkMissedTasks:
    def test_sweeps_and_reports_count(self, seed_session, cron_headers):
        today = schedule_today()
        with seed_session() as s:
            make_instance(s, uuid4(), today - timedelta(days=1))
            make_instance(s, uuid4(), today - timedelta(days=4))
            make_instance(s, uuid4(), today)

        response = client.post("/v1/jobs/mark-missed-tasks", headers=cron_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["affectedCount"] == 2
        assert isinstance(data["executionTimeMs"], int)

        again = client.post("/v1/jobs/mark-missed-tasks", headers=cron_headers)
        assert again.json()["affectedCount"] == 0

    def test_failure_returns_500_payload(self, cron_headers, monkeypatch):
        def unavailable(db, today, now):
            raise TransientStoreError("mark_missed_tasks failed: store unavailable")

        monkeypatch.setattr(missed_task_sweeper, "mark_missed_tasks", unavailable)
        response = client.post("/v1/jobs/mark-missed-tasks", headers=cron_headers)

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert "store unavailable" in data["error"]


class TestReconcile:
    def test_materializes_active_rules(self, seed_session, cron_headers):
        with seed_session() as s:
            make_rule(s, owner_id=uuid4(), assignee_id=uuid4(), start_date=schedule_today())

        response = client.post("/v1/jobs/reconcile", headers=cron_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["affectedCount"] == data["created"]
        assert data["created"] > 0
        assert data["rulesProcessed"] == 1

        again = client.post("/v1/jobs/reconcile", headers=cron_headers).json()
        assert again["affectedCount"] == 0
        assert again["unchanged"] == data["created"]

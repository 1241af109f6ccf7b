"""Integration tests for /sync routes."""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from invoice_mirror.api.main import create_app
from invoice_mirror.api.routes.sync import get_sync_service
from invoice_mirror.db.sql_store import SqlInvoiceStore, SqlSyncLogStore
from invoice_mirror.models.sync import SyncLog
from invoice_mirror.sync.service import (
    InvoiceSyncService,
    SyncAlreadyRunningError,
    SyncConfig,
)


@pytest.fixture(name="service")
def service_fixture(engine):
    return InvoiceSyncService(
        client=AsyncMock(),
        store=SqlInvoiceStore(engine),
        log_store=SqlSyncLogStore(engine),
        config=SyncConfig(page_delay_seconds=0),
    )


@pytest.fixture(name="client")
def client_fixture(service):
    app = create_app()
    app.dependency_overrides[get_sync_service] = lambda: service
    with TestClient(app) as c:
        yield c


@pytest.fixture(name="seeded_logs")
def seeded_logs_fixture(engine):
    with Session(engine) as s:
        s.add(SyncLog(
            sync_type="invoices",
            start_time=datetime(2025, 1, 14, 2, 0),
            end_time=datetime(2025, 1, 14, 2, 5),
            status="completed",
            total_records=140,
            processed_records=140,
            api_calls_count=2,
            duration_seconds=300,
        ))
        s.add(SyncLog(
            sync_type="invoices",
            start_time=datetime(2025, 1, 15, 2, 0),
            end_time=datetime(2025, 1, 15, 2, 1),
            status="failed",
            duration_seconds=60,
            error_message="db offline",
        ))
        s.commit()


class TestSyncTrigger:
    def test_trigger_returns_job_id(self, client, service):
        service.trigger_sync = MagicMock(return_value="job-123")
        resp = client.post("/sync/trigger")
        assert resp.status_code == 200
        body = resp.json()
        assert body["job_id"] == "job-123"
        assert body["status"] == "queued"
        service.trigger_sync.assert_called_once()

    def test_trigger_conflict_when_running(self, client, service):
        service.trigger_sync = MagicMock(side_effect=SyncAlreadyRunningError("busy"))
        resp = client.post("/sync/trigger")
        assert resp.status_code == 409
        assert resp.json()["detail"] == "busy"


class TestSyncStatus:
    def test_status_never_synced(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["last_sync_status"] == "never"
        assert body["is_running"] is False
        assert body["total_invoices"] == 0

    def test_status_reports_latest_run(self, client, seeded_logs):
        resp = client.get("/sync/status")
        body = resp.json()
        assert body["last_sync_status"] == "failed"
        assert body["error_message"] == "db offline"
        assert body["duration"] == 60


class TestSyncHistory:
    def test_history_empty(self, client):
        resp = client.get("/sync/history")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_history_newest_first(self, client, seeded_logs):
        resp = client.get("/sync/history")
        body = resp.json()
        assert [item["status"] for item in body] == ["failed", "completed"]
        assert body[1]["processed_records"] == 140
        assert body[1]["api_calls"] == 2

    def test_history_limit(self, client, seeded_logs):
        resp = client.get("/sync/history?limit=1")
        assert len(resp.json()) == 1

    def test_history_limit_validated(self, client):
        resp = client.get("/sync/history?limit=0")
        assert resp.status_code == 422

"""
backend/tests/test_app_endpoints.py

Purpose:
    HTTP surface of the app without its lifespan: health reporting with the
    database up or down, on-demand task triggers and the request id echoed
    by the structured logging middleware.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

sys.path.insert(0, "backend")

import oddsline.main as main
from oddsline.middleware.logging import RequestIdFilter
from oddsline.services.task_runner import TaskRunner


class _PingDB:
    def __init__(self, ok=True):
        self.ok = ok

    async def command(self, name):
        if not self.ok:
            raise ServerSelectionTimeoutError("no primary")
        return {"ok": 1.0}


def _client(monkeypatch, *, db_ok=True, runner=None):
    monkeypatch.setattr(main._db, "db", _PingDB(db_ok), raising=False)
    monkeypatch.setattr(main, "task_runner", runner or TaskRunner())
    return TestClient(main.app)


def test_health_reports_connected_database(monkeypatch):
    client = _client(monkeypatch)

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["db"] == "connected"
    assert set(body["odds_feed"]) == {"enabled", "circuit_open", "circuit_state", "quota"}
    assert body["tasks"] == {}


def test_health_degrades_when_database_unreachable(monkeypatch):
    client = _client(monkeypatch, db_ok=False)

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["db"] == "disconnected"


@pytest.mark.asyncio
async def test_task_trigger_returns_before_the_run_finishes(monkeypatch):
    release = asyncio.Event()
    done = {"finished": False}

    async def job():
        await release.wait()
        done["finished"] = True

    runner = TaskRunner()
    runner.register("odds_poller", job, minutes=5)
    monkeypatch.setattr(main, "task_runner", runner)

    started = await main.run_task("odds_poller")
    await asyncio.sleep(0)
    again = await main.run_task("odds_poller")

    assert started == {"task": "odds_poller", "status": "started"}
    assert done["finished"] is False
    assert runner.get("odds_poller").running
    assert again.status_code == 409

    release.set()
    await asyncio.gather(*main._manual_runs)
    assert done["finished"] is True
    assert runner.get("odds_poller").runs == 1


def test_unknown_task_is_404(monkeypatch):
    client = _client(monkeypatch)

    assert client.post("/tasks/nope/run").status_code == 404


def test_request_id_is_echoed_or_generated(monkeypatch):
    client = _client(monkeypatch)

    echoed = client.get("/health", headers={"X-Request-ID": "abc123"})
    generated = client.get("/health")

    assert echoed.headers["X-Request-ID"] == "abc123"
    assert len(generated.headers["X-Request-ID"]) == 8


def test_request_id_filter_defaults_outside_requests():
    record = logging.LogRecord("oddsline.test", logging.INFO, __file__, 1, "msg", None, None)

    assert RequestIdFilter().filter(record) is True
    assert record.request_id == "-"

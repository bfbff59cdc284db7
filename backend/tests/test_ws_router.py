"""
backend/tests/test_ws_router.py

Purpose:
    WebSocket endpoint protocol: ping/pong, join/leave commands, error
    replies and the connection cap.
"""

from __future__ import annotations

import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

sys.path.insert(0, "backend")

from oddsline.routers import ws as ws_router
from oddsline.services.websocket_manager import WebSocketManager


def _client(monkeypatch, *, max_connections=10) -> tuple[TestClient, WebSocketManager]:
    manager = WebSocketManager(max_connections=max_connections, heartbeat_seconds=30)
    monkeypatch.setattr(ws_router, "websocket_manager", manager)
    app = FastAPI()
    app.include_router(ws_router.router)
    return TestClient(app), manager


def test_ping_and_room_commands(monkeypatch):
    client, _ = _client(monkeypatch)
    with client.websocket_connect("/ws?user_id=u1&rooms=live") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        ws.send_json({"type": "join", "rooms": ["match:ev1"]})
        assert ws.receive_json() == {"type": "rooms", "data": {"rooms": ["live", "match:ev1", "user:u1"]}}

        ws.send_json({"type": "leave", "rooms": ["live"]})
        assert ws.receive_json()["data"]["rooms"] == ["match:ev1", "user:u1"]

        ws.send_text("{not json")
        assert ws.receive_json()["data"]["detail"] == "invalid_json"

        ws.send_json({"type": "subscribe", "rooms": ["live"]})
        assert ws.receive_json()["data"]["detail"] == "unsupported_command"


def test_disconnect_releases_slot(monkeypatch):
    client, manager = _client(monkeypatch)
    with client.websocket_connect("/ws"):
        pass
    assert manager.stats()["active_connections"] == 0


def test_connection_cap_closes_with_4002(monkeypatch):
    client, _ = _client(monkeypatch, max_connections=1)
    with client.websocket_connect("/ws") as first:
        first.send_text("ping")
        assert first.receive_text() == "pong"
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws") as second:
                second.receive_text()
        assert exc.value.code == 4002

"""
backend/oddsline/services/websocket_manager.py

Purpose:
    Process-local WebSocket connection manager for realtime odds, match and
    settlement updates. Clients join rooms: ``live`` (all live matches),
    ``match:<id>`` (one match) and ``user:<id>`` (own wagers, joined
    automatically on connect). Broadcasts go to the union of target rooms,
    each connection receiving a message at most once.

    A room index (room -> connection ids) is kept next to the connection
    table so a broadcast touches only the members of its target rooms. The
    heartbeat pings every connection and evicts those that have been silent
    for ``IDLE_HEARTBEATS`` intervals.

Dependencies:
    - fastapi.WebSocket
    - oddsline.config
    - oddsline.utils
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from fastapi import WebSocket

from oddsline.config import settings
from oddsline.utils import utcnow

logger = logging.getLogger("oddsline.websocket_manager")

LIVE_ROOM = "live"
MATCH_PREFIX = "match:"
USER_PREFIX = "user:"
IDLE_HEARTBEATS = 3
_ERROR_BUFFER = 200


def match_room(match_id: str) -> str:
    return f"{MATCH_PREFIX}{match_id}"


def user_room(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


def joinable_rooms(values: Any) -> set[str]:
    """Rooms a client may request itself; personal rooms are assigned, not joined."""
    if not isinstance(values, list):
        return set()
    out: set[str] = set()
    for item in values:
        room = str(item or "").strip()
        if room == LIVE_ROOM or (room.startswith(MATCH_PREFIX) and len(room) > len(MATCH_PREFIX)):
            out.add(room)
        elif room:
            logger.warning("Rejected websocket room request room=%s", room)
    return out


@dataclass
class ManagedConnection:
    connection_id: str
    user_id: str | None
    websocket: WebSocket
    connected_at: datetime
    last_seen_at: datetime
    rooms: set[str] = field(default_factory=set)


class WebSocketManager:
    def __init__(self, *, max_connections: int, heartbeat_seconds: int) -> None:
        self._max_connections = max(1, int(max_connections))
        self._heartbeat_seconds = max(1, int(heartbeat_seconds))
        self._connections: dict[str, ManagedConnection] = {}
        self._members: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None
        self._running = False
        self._broadcast_total = 0
        self._send_failures = 0
        self._dropped_connections = 0
        self._idle_evictions = 0
        self._last_errors: deque[dict[str, Any]] = deque(maxlen=_ERROR_BUFFER)

    @property
    def is_full(self) -> bool:
        return len(self._connections) >= self._max_connections

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="ws_heartbeat")
        logger.info("WebSocket manager started heartbeat=%ss", self._heartbeat_seconds)

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            task, self._heartbeat_task = self._heartbeat_task, None
            self._connections.clear()
            self._members.clear()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("WebSocket manager stopped")

    async def connect(
        self,
        websocket: WebSocket,
        *,
        user_id: str | None = None,
        rooms: list[str] | None = None,
    ) -> str:
        await websocket.accept()
        async with self._lock:
            if self.is_full:
                raise RuntimeError("max_connections_exceeded")
            now = utcnow()
            conn = ManagedConnection(
                connection_id=str(uuid.uuid4()),
                user_id=str(user_id) if user_id else None,
                websocket=websocket,
                connected_at=now,
                last_seen_at=now,
            )
            self._connections[conn.connection_id] = conn
            self._enter(conn, joinable_rooms(rooms or []))
            self._keep_personal_room(conn)
            return conn.connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self._remove(connection_id)

    async def touch(self, connection_id: str) -> None:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn:
                conn.last_seen_at = utcnow()

    async def update_rooms(self, connection_id: str, command_type: str, rooms: Any) -> list[str]:
        """Apply a ``join`` / ``leave`` command; returns the connection's rooms."""
        if command_type not in ("join", "leave"):
            raise ValueError("unsupported_command")
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                raise RuntimeError("connection_not_found")
            requested = joinable_rooms(rooms)
            if command_type == "join":
                self._enter(conn, requested)
            else:
                self._leave(conn, requested)
            self._keep_personal_room(conn)
            conn.last_seen_at = utcnow()
            return sorted(conn.rooms)

    async def broadcast(
        self,
        *,
        event_type: str,
        data: dict[str, Any],
        rooms: list[str],
        meta: dict[str, Any] | None = None,
    ) -> int:
        message = {"type": str(event_type), "data": data, "meta": meta or {}}
        async with self._lock:
            target_ids: set[str] = set()
            for room in rooms:
                target_ids |= self._members.get(str(room), set())
            targets = [self._connections[cid] for cid in target_ids if cid in self._connections]

        delivered = 0
        dead: list[str] = []
        for conn in targets:
            try:
                await conn.websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                dead.append(conn.connection_id)
                self._send_failures += 1
                self._last_errors.append({
                    "ts": utcnow().isoformat(),
                    "connection_id": conn.connection_id,
                    "event_type": str(event_type),
                    "error": str(exc),
                })

        await self._drop(dead, reason="send_failed")
        self._broadcast_total += 1
        return delivered

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "active_connections": len(self._connections),
            "max_connections": self._max_connections,
            "heartbeat_seconds": self._heartbeat_seconds,
            "rooms": {room: len(ids) for room, ids in sorted(self._members.items())},
            "broadcast_total": self._broadcast_total,
            "send_failures": self._send_failures,
            "dropped_connections": self._dropped_connections,
            "idle_evictions": self._idle_evictions,
            "last_errors": list(self._last_errors),
        }

    def _enter(self, conn: ManagedConnection, rooms: Iterable[str]) -> None:
        for room in rooms:
            conn.rooms.add(room)
            self._members.setdefault(room, set()).add(conn.connection_id)

    def _leave(self, conn: ManagedConnection, rooms: Iterable[str]) -> None:
        for room in rooms:
            conn.rooms.discard(room)
            members = self._members.get(room)
            if members is None:
                continue
            members.discard(conn.connection_id)
            if not members:
                del self._members[room]

    def _keep_personal_room(self, conn: ManagedConnection) -> None:
        if conn.user_id:
            self._enter(conn, [user_room(conn.user_id)])

    def _remove(self, connection_id: str) -> bool:
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False
        self._leave(conn, list(conn.rooms))
        return True

    async def _drop(self, connection_ids: list[str], *, reason: str) -> None:
        if not connection_ids:
            return
        async with self._lock:
            removed = sum(1 for cid in connection_ids if self._remove(cid))
        self._dropped_connections += removed
        if removed:
            logger.info("Dropped %d websocket connection(s) reason=%s", removed, reason)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._heartbeat_seconds)
            now = utcnow()
            idle_limit = self._heartbeat_seconds * IDLE_HEARTBEATS
            async with self._lock:
                connections = list(self._connections.values())
            idle = [c for c in connections if (now - c.last_seen_at).total_seconds() > idle_limit]
            for conn in idle:
                try:
                    await conn.websocket.close(code=4001, reason="Idle timeout")
                except Exception as exc:
                    logger.debug("Close of idle websocket failed connection_id=%s: %s", conn.connection_id, exc)
            self._idle_evictions += len(idle)
            idle_ids = {c.connection_id for c in idle}
            await self._drop(list(idle_ids), reason="idle")

            dead: list[str] = []
            for conn in connections:
                if conn.connection_id in idle_ids:
                    continue
                try:
                    await conn.websocket.send_json({"type": "ping", "data": {"ts": now.isoformat()}})
                except Exception:
                    dead.append(conn.connection_id)
            await self._drop(dead, reason="heartbeat_failed")


websocket_manager = WebSocketManager(
    max_connections=settings.WS_MAX_CONNECTIONS,
    heartbeat_seconds=settings.WS_HEARTBEAT_SECONDS,
)

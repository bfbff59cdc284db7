"""
backend/oddsline/services/event_handlers/websocket_handlers.py

Purpose:
    Event bus subscribers that forward odds, lifecycle and settlement events
    to WebSocket rooms: per-match rooms, the global ``live`` room and per-user
    rooms.

Dependencies:
    - oddsline.database
    - oddsline.services.event_models
    - oddsline.services.websocket_manager
"""

from __future__ import annotations

import logging
from typing import Any

import oddsline.database as _db
from oddsline.config import settings
from oddsline.models.match import MatchStatus
from oddsline.services.event_models import BaseEvent
from oddsline.services.match_service import serialize_match
from oddsline.services.websocket_manager import LIVE_ROOM, match_room, user_room, websocket_manager
from oddsline.utils import ensure_utc

logger = logging.getLogger("oddsline.event_handlers.websocket")


def _meta(event: BaseEvent) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "correlation_id": event.correlation_id,
        "occurred_at": ensure_utc(event.occurred_at).isoformat(),
    }


async def handle_odds_updated_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    event_ids = sorted({str(item) for item in (getattr(event, "event_ids", []) or []) if str(item).strip()})
    if not event_ids:
        return
    matches = await _db.db.matches.find(
        {"external_id": {"$in": event_ids}},
        {"external_id": 1, "sport_key": 1, "status": 1, "odds": 1, "home_team": 1, "away_team": 1},
    ).to_list(length=len(event_ids))

    delivered = 0
    live_payload = []
    for match in matches:
        item = {
            "match_id": match["external_id"],
            "sport_key": match.get("sport_key", ""),
            "home_team": match.get("home_team", ""),
            "away_team": match.get("away_team", ""),
            "odds": serialize_match(match)["odds"],
        }
        delivered += await websocket_manager.broadcast(
            event_type="odds.updated",
            data=item,
            rooms=[match_room(match["external_id"])],
            meta=_meta(event),
        )
        if match.get("status") == MatchStatus.live.value:
            live_payload.append(item)

    if live_payload:
        # Live room gets one batched message per ingest.
        delivered += await websocket_manager.broadcast(
            event_type="odds.updated",
            data={"sport_key": getattr(event, "sport_key", ""), "matches": live_payload},
            rooms=[LIVE_ROOM],
            meta=_meta(event),
        )
    logger.debug("odds.updated fanout matches=%d delivered=%d", len(matches), delivered)


async def handle_lifecycle_changed_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    match_id = str(getattr(event, "match_id", "") or "")
    if not match_id:
        return
    finished_at = getattr(event, "finished_at", None)
    await websocket_manager.broadcast(
        event_type="match.lifecycle_changed",
        data={
            "match_id": match_id,
            "sport_key": getattr(event, "sport_key", ""),
            "home_team": getattr(event, "home_team", ""),
            "away_team": getattr(event, "away_team", ""),
            "previous_status": getattr(event, "previous_status", None),
            "status": getattr(event, "new_status", ""),
            "finished_at": ensure_utc(finished_at).isoformat() if finished_at else None,
            "scores": getattr(event, "scores", None),
        },
        rooms=[match_room(match_id), LIVE_ROOM],
        meta=_meta(event),
    )


async def handle_wager_settled_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    user_id = str(getattr(event, "user_id", "") or "")
    if not user_id:
        return
    await websocket_manager.broadcast(
        event_type="wager.settled",
        data={
            "wager_id": getattr(event, "wager_id", ""),
            "match_id": getattr(event, "match_id", ""),
            "status": getattr(event, "status", ""),
            "actual_payout": getattr(event, "actual_payout", 0.0),
            "push": getattr(event, "push", False),
            "home_score": getattr(event, "home_score", None),
            "away_score": getattr(event, "away_score", None),
            "settled_at": ensure_utc(event.settled_at).isoformat(),
        },
        rooms=[user_room(user_id)],
        meta=_meta(event),
    )

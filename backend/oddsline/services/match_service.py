"""Match service: mirrors odds events into canonical matches and serves match queries.

Mirroring never touches ``status``, ``scores`` or ``finished_at`` of an
existing match; those belong to the lifecycle sweep and the scores poller.
New matches are inserted as ``upcoming``.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from pymongo import UpdateOne
from pymongo.errors import BulkWriteError

import oddsline.database as _db
from oddsline.models.match import MatchStatus
from oddsline.services.cache import TTLCache
from oddsline.utils import ensure_utc, parse_utc_or_none, utcnow
from oddsline.utils.team_names import same_team

logger = logging.getLogger("oddsline.match_service")

_SPORT_FAMILIES = (
    ("americanfootball", "football"),
    ("basketball", "basketball"),
    ("soccer", "soccer"),
    ("baseball", "baseball"),
    ("icehockey", "hockey"),
    ("tennis", "tennis"),
)

_live_cache = TTLCache(ttl=30)


def sport_family(sport_key: str) -> str:
    """Internal sport family for an upstream sport key (default soccer)."""
    key = str(sport_key or "").lower()
    for prefix, family in _SPORT_FAMILIES:
        if key.startswith(prefix):
            return family
    return "soccer"


def _first_market(doc: dict[str, Any], key: str) -> Optional[dict[str, Any]]:
    for bookmaker in doc.get("bookmakers") or []:
        for market in bookmaker.get("markets") or []:
            if market.get("key") == key and market.get("outcomes"):
                return market
    return None


def build_odds_projection(doc: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Sparse display odds: first bookmaker carrying each market wins."""
    home = doc.get("home_team", "")
    away = doc.get("away_team", "")
    projection: dict[str, Any] = {"h2h": {}, "totals": {}, "spreads": {}, "updated_at": now or utcnow()}

    h2h = _first_market(doc, "h2h")
    if h2h:
        for outcome in h2h["outcomes"]:
            name = outcome.get("name", "")
            if same_team(name, home):
                projection["h2h"]["1"] = outcome["price"]
            elif same_team(name, away):
                projection["h2h"]["2"] = outcome["price"]
            elif name.lower() in ("draw", "tie"):
                projection["h2h"]["X"] = outcome["price"]

    totals = _first_market(doc, "totals")
    if totals:
        for outcome in totals["outcomes"]:
            side = str(outcome.get("name", "")).lower()
            if side in ("over", "under"):
                projection["totals"][side] = outcome["price"]
                if outcome.get("point") is not None:
                    projection["totals"]["line"] = outcome["point"]

    spreads = _first_market(doc, "spreads")
    if spreads:
        for outcome in spreads["outcomes"]:
            name = outcome.get("name", "")
            prefix = "home" if same_team(name, home) else "away" if same_team(name, away) else None
            if prefix is None:
                continue
            projection["spreads"][f"{prefix}_odds"] = outcome["price"]
            if outcome.get("point") is not None:
                projection["spreads"][f"{prefix}_line"] = outcome["point"]
    return projection


async def mirror_matches(docs: list[dict[str, Any]]) -> dict[str, int]:
    """Upsert canonical matches (keyed by external id) from merged odds documents."""
    now = utcnow()
    ops = []
    for doc in docs:
        event_id = doc.get("event_id")
        start_time = parse_utc_or_none(doc.get("commence_time"))
        if not event_id or start_time is None or not doc.get("home_team") or not doc.get("away_team"):
            continue
        ops.append(UpdateOne(
            {"external_id": str(event_id)},
            {
                "$set": {
                    "sport": sport_family(doc.get("sport_key", "")),
                    "sport_key": doc.get("sport_key", ""),
                    "home_team": doc["home_team"],
                    "away_team": doc["away_team"],
                    "start_time": start_time,
                    "odds": build_odds_projection(doc, now=now),
                    "updated_at": now,
                },
                "$setOnInsert": {
                    "status": MatchStatus.upcoming.value,
                    "created_at": now,
                },
            },
            upsert=True,
        ))
    if not ops:
        return {"mirrored": 0, "inserted": 0, "errors": 0}

    errors = 0
    try:
        result = await _db.db.matches.bulk_write(ops, ordered=False)
        inserted = int(result.upserted_count or 0)
    except BulkWriteError as exc:
        details = exc.details or {}
        errors = len(details.get("writeErrors", []))
        inserted = int(details.get("nUpserted", 0) or 0)
        logger.error("Match mirror partially failed: %d of %d writes", errors, len(ops))

    if inserted:
        _live_cache.invalidate_prefix("live")
    logger.info("Mirrored %d matches (%d new)", len(ops) - errors, inserted)
    return {"mirrored": len(ops) - errors, "inserted": inserted, "errors": errors}


def serialize_match(doc: dict[str, Any]) -> dict[str, Any]:
    odds = dict(doc.get("odds") or {})
    if odds.get("updated_at"):
        odds["updated_at"] = ensure_utc(odds["updated_at"]).isoformat()
    return {
        "id": str(doc["_id"]) if doc.get("_id") is not None else None,
        "external_id": doc.get("external_id"),
        "sport": doc.get("sport"),
        "sport_key": doc.get("sport_key"),
        "home_team": doc.get("home_team"),
        "away_team": doc.get("away_team"),
        "start_time": ensure_utc(doc["start_time"]).isoformat() if doc.get("start_time") else None,
        "status": doc.get("status"),
        "scores": doc.get("scores"),
        "finished_at": ensure_utc(doc["finished_at"]).isoformat() if doc.get("finished_at") else None,
        "odds": odds,
    }


async def _load_live() -> list[dict[str, Any]]:
    cursor = _db.db.matches.find({"status": MatchStatus.live.value}).sort("start_time", 1)
    return await cursor.to_list(length=500)


async def get_live_matches() -> list[dict[str, Any]]:
    return await _live_cache.get_or_load("live", _load_live) or []


def invalidate_match_cache() -> int:
    return _live_cache.invalidate_prefix("live")


async def live_sport_keys() -> set[str]:
    """Sport keys with at least one live match. Reads our own DB only."""
    return {m["sport_key"] for m in await get_live_matches() if m.get("sport_key")}


async def get_match(match_id: str) -> Optional[dict[str, Any]]:
    """Match by external id, falling back to the internal ObjectId."""
    doc = await _db.db.matches.find_one({"external_id": str(match_id)})
    if doc is None and ObjectId.is_valid(match_id):
        doc = await _db.db.matches.find_one({"_id": ObjectId(match_id)})
    return doc


async def get_matches(
    sport_key: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Matches with optional filters, sorted by start time."""
    query: dict[str, Any] = {}
    if sport_key:
        query["sport_key"] = sport_key
    if status:
        query["status"] = status
    else:
        query["status"] = {"$in": [MatchStatus.upcoming.value, MatchStatus.live.value]}
    cursor = _db.db.matches.find(query).sort("start_time", 1).limit(limit)
    return await cursor.to_list(length=limit)


async def apply_scores(external_id: str, home: int, away: int) -> bool:
    """Store a final/live score on the mirrored match; status is left to the sweep."""
    result = await _db.db.matches.update_one(
        {"external_id": str(external_id)},
        {"$set": {"scores": {"home": int(home), "away": int(away)}, "updated_at": utcnow()}},
    )
    return bool(result.modified_count)

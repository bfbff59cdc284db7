"""
backend/oddsline/services/odds_merge.py

Purpose:
    Single merge entry point for bookmaker/market/outcome data. Folds freshly
    fetched provider payloads into previously stored odds without ever
    regressing good data:
      - an incoming market with outcomes replaces the stored market for that
        canonical key, unless the stored copy is strictly newer;
      - an incoming market with no outcomes never erases stored outcomes;
      - bookmakers and markets absent from the payload are kept as-is.
    Output is sorted by key so repeated merges of the same input are
    byte-identical.

Dependencies:
    - oddsline.services.market_keys
    - oddsline.utils
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from oddsline.services.market_keys import normalize_market_key
from oddsline.utils import parse_utc_or_none

logger = logging.getLogger("oddsline.odds_merge")

_EVENT_FIELDS = ("sport_key", "sport_title", "home_team", "away_team")


def event_id_of(event: dict[str, Any]) -> str:
    """Provider payloads carry ``id``; stored documents carry ``event_id``."""
    return str(event.get("event_id") or event.get("id") or "").strip()


def _clean_outcome(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    try:
        price = float(raw.get("price"))
    except (TypeError, ValueError):
        return None
    if not name or price <= 0:
        return None
    outcome: dict[str, Any] = {"name": name, "price": price}
    point = raw.get("point")
    if point is not None:
        try:
            outcome["point"] = float(point)
        except (TypeError, ValueError):
            pass
    return outcome


def _clean_market(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    key = normalize_market_key(raw.get("key"))
    if not key:
        return None
    outcomes = [o for o in (_clean_outcome(item) for item in raw.get("outcomes") or []) if o]
    return {
        "key": key,
        "last_update": parse_utc_or_none(raw.get("last_update")),
        "outcomes": outcomes,
    }


def _merge_market(current: dict[str, Any] | None, incoming: dict[str, Any]) -> dict[str, Any]:
    if current is None:
        return incoming
    if not incoming["outcomes"]:
        return current
    if not current["outcomes"]:
        return incoming
    cur_ts = current.get("last_update")
    inc_ts = incoming.get("last_update")
    if cur_ts is not None and inc_ts is not None and inc_ts < cur_ts:
        return current
    return incoming


def _later(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _index_bookmakers(bookmakers: Any) -> dict[str, dict[str, Any]]:
    """Clean a bookmaker list into ``{key: {title, last_update, markets{key: market}}}``.

    Duplicate bookmakers and markets collapsing onto one canonical key are
    folded with the same market rule used for stored-vs-incoming.
    """
    out: dict[str, dict[str, Any]] = {}
    for raw in bookmakers or []:
        if not isinstance(raw, dict):
            continue
        key = str(raw.get("key") or "").strip()
        if not key:
            continue
        entry = out.setdefault(key, {"title": "", "last_update": None, "markets": {}})
        entry["title"] = str(raw.get("title") or "") or entry["title"]
        entry["last_update"] = _later(entry["last_update"], parse_utc_or_none(raw.get("last_update")))
        for raw_market in raw.get("markets") or []:
            market = _clean_market(raw_market)
            if market is None:
                continue
            entry["markets"][market["key"]] = _merge_market(entry["markets"].get(market["key"]), market)
    return out


def merge_bookmakers(existing: Any, incoming: Any) -> list[dict[str, Any]]:
    """Merge an incoming bookmaker list onto the stored one (additive, non-destructive)."""
    merged = _index_bookmakers(existing)
    for key, inc in _index_bookmakers(incoming).items():
        cur = merged.get(key)
        if cur is None:
            merged[key] = inc
            continue
        cur["title"] = inc["title"] or cur["title"]
        cur["last_update"] = _later(cur["last_update"], inc["last_update"])
        for market_key, market in inc["markets"].items():
            cur["markets"][market_key] = _merge_market(cur["markets"].get(market_key), market)

    return [
        {
            "key": key,
            "title": entry["title"],
            "last_update": entry["last_update"],
            "markets": [entry["markets"][mk] for mk in sorted(entry["markets"])],
        }
        for key, entry in sorted(merged.items())
    ]


def merge_event_document(
    existing: dict[str, Any] | None,
    incoming: dict[str, Any],
    *,
    now: datetime,
) -> dict[str, Any]:
    """Build the full stored odds document for one event."""
    existing = existing or {}
    doc: dict[str, Any] = {"event_id": event_id_of(incoming) or event_id_of(existing)}
    for field in _EVENT_FIELDS:
        doc[field] = str(incoming.get(field) or existing.get(field) or "")
    doc["commence_time"] = (
        parse_utc_or_none(incoming.get("commence_time"))
        or parse_utc_or_none(existing.get("commence_time"))
    )
    doc["bookmakers"] = merge_bookmakers(existing.get("bookmakers"), incoming.get("bookmakers"))
    doc["last_fetched"] = now
    return doc


def merge_events(
    existing_events: list[dict[str, Any]],
    incoming_events: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Fold fetched chunks (e.g. one call per market batch) into one event list.

    Events without an id are dropped with a debug log. Header fields follow
    the latest chunk carrying them; bookmakers go through ``merge_bookmakers``.
    """
    by_id: dict[str, dict[str, Any]] = {}
    for event in [*existing_events, *incoming_events]:
        if not isinstance(event, dict):
            continue
        event_id = event_id_of(event)
        if not event_id:
            logger.debug("Skipping odds event without id: keys=%s", sorted(event.keys()))
            continue
        current = by_id.get(event_id)
        if current is None:
            by_id[event_id] = {
                **event,
                "id": event_id,
                "bookmakers": merge_bookmakers([], event.get("bookmakers")),
            }
            continue
        for field in (*_EVENT_FIELDS, "commence_time"):
            if event.get(field):
                current[field] = event[field]
        current["bookmakers"] = merge_bookmakers(current.get("bookmakers"), event.get("bookmakers"))
    return list(by_id.values())

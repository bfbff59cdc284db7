"""
backend/oddsline/services/wager_service.py

Purpose:
    Wager creation and cancellation. The selection text is parsed exactly once
    here into a typed (family, side, line) triple stored on the wager;
    settlement reads that triple instead of re-sniffing the text.

Dependencies:
    - oddsline.database
    - oddsline.services.market_keys
    - oddsline.services.selection_grammar
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from bson import ObjectId

import oddsline.database as _db
from oddsline.models.wager import Wager, WagerStatus
from oddsline.services.market_keys import market_family, normalize_market_key
from oddsline.services.selection_grammar import parse_selection
from oddsline.utils import utcnow

logger = logging.getLogger("oddsline.wager_service")


class InvalidSelection(ValueError):
    """Selection text does not fit the grammar of its market family."""


def build_wager(
    *,
    user_id: str,
    match_id: str,
    market: str,
    selection: str,
    stake: float,
    odds: float,
    home_team: str = "",
    away_team: str = "",
) -> Wager:
    family = market_family(market)
    parsed = parse_selection(family, selection, home_team, away_team)
    if parsed is None:
        raise InvalidSelection(f"Cannot parse selection {selection!r} for market {market!r}")
    return Wager(
        user_id=str(user_id),
        match_id=str(match_id),
        home_team=home_team,
        away_team=away_team,
        market=normalize_market_key(market) or str(market),
        market_family=family,
        selection=selection,
        parsed=parsed,
        stake=stake,
        odds=odds,
        potential_payout=round(float(stake) * float(odds), 2),
        created_at=utcnow(),
    )


async def place_wager(
    *,
    user_id: str,
    match_id: str,
    market: str,
    selection: str,
    stake: float,
    odds: float,
) -> dict[str, Any]:
    """Insert a pending wager. Team names are copied from the mirrored match."""
    match = await _db.db.matches.find_one({"external_id": str(match_id)})
    if not match:
        raise LookupError(f"Match {match_id} not found")
    wager = build_wager(
        user_id=user_id,
        match_id=match_id,
        market=market,
        selection=selection,
        stake=stake,
        odds=odds,
        home_team=match.get("home_team", ""),
        away_team=match.get("away_team", ""),
    )
    doc = wager.model_dump()
    result = await _db.db.wagers.insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info(
        "Wager placed user=%s match=%s market=%s selection=%r stake=%.2f",
        user_id, match_id, doc["market"], selection, wager.stake,
    )
    return doc


async def cancel_wager(wager_id: str, *, reason: str = "") -> Optional[dict[str, Any]]:
    """Cancel a still-pending wager; returns None when it is already terminal."""
    wager_oid = ObjectId(wager_id) if ObjectId.is_valid(wager_id) else wager_id
    now = utcnow()
    doc = await _db.db.wagers.find_one_and_update(
        {"_id": wager_oid, "status": WagerStatus.pending.value},
        {"$set": {
            "status": WagerStatus.cancelled.value,
            "actual_payout": 0.0,
            "settled_at": now,
            "cancel_reason": reason,
        }},
        return_document=True,
    )
    if doc is None:
        logger.info("Wager %s not cancelled: not pending", wager_id)
    return doc

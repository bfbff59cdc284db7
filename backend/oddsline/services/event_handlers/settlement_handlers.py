"""
backend/oddsline/services/event_handlers/settlement_handlers.py

Purpose:
    Settle a match's wagers as soon as the lifecycle sweep reports it
    finished, if its completed result is already stored. The periodic
    settlement pass picks up anything this misses.

Dependencies:
    - oddsline.database
    - oddsline.services.settlement_service
"""

from __future__ import annotations

import logging

import oddsline.database as _db
from oddsline.models.match import MatchStatus
from oddsline.services.event_models import BaseEvent
from oddsline.services.settlement_service import settle_result

logger = logging.getLogger("oddsline.event_handlers.settlement")


async def handle_match_finished(event: BaseEvent) -> None:
    if getattr(event, "new_status", None) != MatchStatus.finished.value:
        return
    match_id = str(getattr(event, "match_id", "") or "")
    result = await _db.db.completed_results.find_one({"event_id": match_id, "completed": True})
    if result is None:
        logger.debug("No completed result yet for %s; deferring to settlement pass", match_id)
        return
    stats = await settle_result(result)
    if stats.settled:
        logger.info("Settled on finish match=%s %s", match_id, stats.to_dict())

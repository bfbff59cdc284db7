"""Pushes a snapshot of all live matches to the ``live`` room."""

import logging

from oddsline.config import settings
from oddsline.services.match_service import get_live_matches, serialize_match
from oddsline.services.websocket_manager import LIVE_ROOM, websocket_manager

logger = logging.getLogger("oddsline.live_broadcast")


async def broadcast_live_matches() -> int:
    if not settings.WS_EVENTS_ENABLED:
        return 0
    matches = await get_live_matches()
    if not matches:
        return 0
    delivered = await websocket_manager.broadcast(
        event_type="live.snapshot",
        data={"matches": [serialize_match(m) for m in matches]},
        rooms=[LIVE_ROOM],
    )
    logger.debug("Live snapshot: %d matches to %d connections", len(matches), delivered)
    return delivered

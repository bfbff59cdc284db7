"""
backend/oddsline/services/event_handlers/cache_handlers.py

Purpose:
    Drop cached match aggregates when the underlying data changes.

Dependencies:
    - oddsline.services.match_service
"""

from __future__ import annotations

import logging

from oddsline.services.event_models import BaseEvent
from oddsline.services.match_service import invalidate_match_cache

logger = logging.getLogger("oddsline.event_handlers.cache")


async def handle_invalidate_match_cache(event: BaseEvent) -> None:
    dropped = invalidate_match_cache()
    logger.debug("Invalidated %d cached match entries on %s", dropped, event.event_type)

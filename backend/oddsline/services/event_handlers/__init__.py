"""
backend/oddsline/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - oddsline.services.event_bus
    - oddsline.services.event_handlers.cache_handlers
    - oddsline.services.event_handlers.settlement_handlers
    - oddsline.services.event_handlers.websocket_handlers
"""

from __future__ import annotations

from oddsline.config import settings
from oddsline.services.event_bus import InMemoryEventBus
from oddsline.services.event_handlers.cache_handlers import handle_invalidate_match_cache
from oddsline.services.event_handlers.settlement_handlers import handle_match_finished
from oddsline.services.event_handlers.websocket_handlers import (
    handle_lifecycle_changed_ws,
    handle_odds_updated_ws,
    handle_wager_settled_ws,
)
from oddsline.services.event_models import EventType


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if settings.EVENT_HANDLER_CACHE_ENABLED:
        bus.subscribe(EventType.match_lifecycle_changed, handle_invalidate_match_cache, handler_name="match_cache", concurrency=1)
        bus.subscribe(EventType.odds_updated, handle_invalidate_match_cache, handler_name="match_cache", concurrency=1)
    if settings.EVENT_HANDLER_SETTLEMENT_ENABLED:
        bus.subscribe(EventType.match_lifecycle_changed, handle_match_finished, handler_name="settle_on_finish", concurrency=1)
    if settings.WS_EVENTS_ENABLED:
        bus.subscribe(EventType.odds_updated, handle_odds_updated_ws, handler_name="ws_odds_updated", concurrency=1)
        bus.subscribe(EventType.match_lifecycle_changed, handle_lifecycle_changed_ws, handler_name="ws_lifecycle", concurrency=1)
        bus.subscribe(EventType.wager_settled, handle_wager_settled_ws, handler_name="ws_wager_settled", concurrency=1)

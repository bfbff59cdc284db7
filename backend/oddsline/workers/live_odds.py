"""Frequent in-play odds refresh, only for sports that currently have live matches."""

import logging
from typing import Any, Optional

from oddsline.config import settings, split_csv
from oddsline.providers.base import BaseOddsFeed
from oddsline.providers.odds_api import odds_feed
from oddsline.services.match_service import live_sport_keys
from oddsline.services.odds_ingest_service import ingest_events

logger = logging.getLogger("oddsline.live_odds")


async def poll_live_odds(feed: Optional[BaseOddsFeed] = None) -> dict[str, Any]:
    feed = feed or odds_feed
    if not feed.enabled:
        return {"sports": 0, "events": 0}
    sports = sorted(await live_sport_keys())
    if not sports:
        logger.debug("No live matches; live odds poll skipped")
        return {"sports": 0, "events": 0}

    markets = split_csv(settings.ODDS_LIVE_MARKETS)
    events_total = 0
    for sport_key in sports:
        events = await feed.get_odds(sport_key, markets)
        if not events:
            continue
        result = await ingest_events(sport_key, events, source="live_odds")
        events_total += int(result.get("events", 0))
    return {"sports": len(sports), "events": events_total}

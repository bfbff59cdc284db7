"""Periodic pre-match odds ingestion.

Per sport, markets are fetched in small chunks with a pause between chunks
and a longer pause between sports. Each chunk tries the primary bookmaker
list first and the fallback list when the primary one comes back empty.
When a sport yields nothing at all, matches are re-mirrored from the odds
already stored so the match list stays populated.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Optional

from oddsline.config import settings, split_csv
from oddsline.providers.base import BaseOddsFeed
from oddsline.providers.odds_api import odds_feed
from oddsline.services.match_service import mirror_matches
from oddsline.services.odds_ingest_service import ingest_events
from oddsline.services.odds_merge import merge_events
from oddsline.services.odds_repository import odds_repository
from oddsline.workers._state import recently_synced, set_synced

logger = logging.getLogger("oddsline.odds_poller")

Sleeper = Callable[[float], Awaitable[Any]]


def market_chunks(markets: list[str], size: int) -> list[list[str]]:
    size = max(1, int(size))
    return [markets[i:i + size] for i in range(0, len(markets), size)]


async def resolve_sports(feed: BaseOddsFeed) -> list[str]:
    configured = split_csv(settings.ODDS_SPORTS)
    if configured:
        return configured
    return [s["key"] for s in await feed.get_sports() if s.get("key")]


async def fetch_sport(
    feed: BaseOddsFeed,
    sport_key: str,
    markets: list[str],
    *,
    sleep: Sleeper = asyncio.sleep,
) -> list[dict[str, Any]]:
    """Fetch all market chunks for one sport and fold them into one event list."""
    primary = split_csv(settings.ODDS_PRIMARY_BOOKMAKERS) or None
    fallback = split_csv(settings.ODDS_FALLBACK_BOOKMAKERS)
    events: list[dict[str, Any]] = []
    for idx, chunk in enumerate(market_chunks(markets, settings.ODDS_MARKETS_PER_REQUEST)):
        if idx > 0 and settings.ODDS_CHUNK_DELAY_SECONDS > 0:
            await sleep(settings.ODDS_CHUNK_DELAY_SECONDS)
        fetched = await feed.get_odds(sport_key, chunk, bookmakers=primary)
        if not fetched and fallback:
            logger.info("No %s odds for %s from primary bookmakers; trying fallback", ",".join(chunk), sport_key)
            fetched = await feed.get_odds(sport_key, chunk, bookmakers=fallback)
        events = merge_events(events, fetched)
    return events


async def mirror_saved_odds(sport_key: str) -> dict[str, int]:
    docs = await odds_repository.find_recent(sport_key=sport_key, limit=settings.ODDS_MIRROR_FALLBACK_LIMIT)
    if not docs:
        return {"mirrored": 0, "inserted": 0, "errors": 0}
    logger.warning("Feed returned nothing for %s; mirroring %d saved odds documents", sport_key, len(docs))
    return await mirror_matches(docs)


async def poll_odds(
    feed: Optional[BaseOddsFeed] = None,
    *,
    sleep: Sleeper = asyncio.sleep,
    force: bool = False,
) -> dict[str, Any]:
    """One full odds poll over every configured (or discovered) sport.

    Unless ``force`` is set, a poll right after a recent successful one (for
    example just after a restart) is skipped to save feed quota.
    """
    feed = feed or odds_feed
    if not feed.enabled:
        logger.debug("Odds feed disabled; poll skipped")
        return {"sports": 0, "events": 0}
    min_gap = timedelta(minutes=settings.ODDS_POLL_INTERVAL_MINUTES / 2)
    if not force and await recently_synced("odds_poller", min_gap):
        logger.info("Odds polled less than %s ago; skipping this cycle", min_gap)
        return {"sports": 0, "events": 0, "skipped": True}

    markets = split_csv(settings.ODDS_MARKETS)
    sports = await resolve_sports(feed)
    totals = {"sports": 0, "events": 0, "upserted": 0, "modified": 0, "failed_batches": 0, "mirrored_from_store": 0}
    for idx, sport_key in enumerate(sports):
        if idx > 0 and settings.ODDS_SPORT_DELAY_SECONDS > 0:
            await sleep(settings.ODDS_SPORT_DELAY_SECONDS)
        events = await fetch_sport(feed, sport_key, markets, sleep=sleep)
        totals["sports"] += 1
        if not events:
            mirrored = await mirror_saved_odds(sport_key)
            totals["mirrored_from_store"] += mirrored["mirrored"]
            continue
        result = await ingest_events(sport_key, events)
        for key in ("events", "upserted", "modified", "failed_batches"):
            totals[key] += int(result.get(key, 0))
        await set_synced(f"odds:{sport_key}", metrics={"events": result.get("events", 0)})

    await set_synced("odds_poller", metrics=totals)
    quota = feed.quota
    logger.info(
        "Odds poll done: %s (API used=%s remaining=%s)",
        totals, quota.get("requests_used", "?"), quota.get("requests_remaining", "?"),
    )
    return totals

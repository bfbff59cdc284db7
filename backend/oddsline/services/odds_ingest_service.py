"""
backend/oddsline/services/odds_ingest_service.py

Purpose:
    One ingestion step for a sport: merge fetched events into stored odds,
    mirror the merged documents into canonical matches and publish a single
    ``odds.updated`` event for the batch.

Dependencies:
    - oddsline.services.odds_repository
    - oddsline.services.match_service
    - oddsline.services.event_bus
"""

from __future__ import annotations

import logging
from typing import Any

from oddsline.services.event_bus import event_bus
from oddsline.services.event_models import OddsUpdatedEvent
from oddsline.services.match_service import mirror_matches
from oddsline.services.odds_repository import OddsRepository, odds_repository

logger = logging.getLogger("oddsline.odds_ingest")


async def ingest_events(
    sport_key: str,
    events: list[dict[str, Any]],
    *,
    repository: OddsRepository | None = None,
    mirror: bool = True,
    source: str = "odds_poller",
) -> dict[str, Any]:
    repository = repository or odds_repository
    if not events:
        return {"sport_key": sport_key, "events": 0}

    stats, docs = await repository.upsert_events(events)
    mirrored: dict[str, int] = {}
    if mirror and docs:
        mirrored = await mirror_matches(docs)

    if docs:
        event_bus.publish(
            OddsUpdatedEvent(
                source=source,
                sport_key=sport_key,
                event_ids=[d["event_id"] for d in docs],
                upserted=stats.upserted,
                modified=stats.modified,
                failed_batches=stats.failed_batches,
            )
        )
    logger.info(
        "Ingested %s: events=%d upserted=%d modified=%d failed_batches=%d",
        sport_key, stats.events, stats.upserted, stats.modified, stats.failed_batches,
    )
    return {"sport_key": sport_key, **stats.to_dict(), "mirror": mirrored}

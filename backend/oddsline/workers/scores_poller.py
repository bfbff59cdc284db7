"""Scores poller: stores completed results and settles their wagers.

Only sports with a match that kicked off inside the scores window are
polled. Completed scores are upserted into ``completed_results``, copied onto
the mirrored match and settled immediately.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from pymongo import UpdateOne
from pymongo.errors import BulkWriteError

import oddsline.database as _db
from oddsline.config import settings
from oddsline.models.results import CompletedResult, TeamScore
from oddsline.providers.base import BaseOddsFeed
from oddsline.providers.odds_api import odds_feed
from oddsline.services.match_service import apply_scores
from oddsline.services.settlement_service import SettlementStats, extract_scores, settle_result
from oddsline.utils import parse_utc_or_none, utcnow
from oddsline.workers._state import set_synced

logger = logging.getLogger("oddsline.scores_poller")


async def sports_with_recent_kickoffs() -> list[str]:
    now = utcnow()
    since = now - timedelta(days=settings.ODDS_SCORES_DAYS_FROM)
    rows = await _db.db.matches.find(
        {"start_time": {"$gte": since, "$lte": now}, "status": {"$nin": ["cancelled", "postponed"]}},
        {"sport_key": 1},
    ).to_list(length=5000)
    return sorted({r["sport_key"] for r in rows if r.get("sport_key")})


def to_result_doc(item: dict[str, Any]) -> Optional[dict[str, Any]]:
    event_id = item.get("id") or item.get("event_id")
    if not event_id or not isinstance(item.get("scores"), list):
        return None
    result = CompletedResult(
        event_id=str(event_id),
        sport_key=item.get("sport_key") or "",
        home_team=item.get("home_team") or "",
        away_team=item.get("away_team") or "",
        commence_time=parse_utc_or_none(item.get("commence_time")),
        scores=[
            TeamScore(name=str(s.get("name") or ""), score=None if s.get("score") is None else str(s["score"]))
            for s in item["scores"]
            if isinstance(s, dict)
        ],
        completed=bool(item.get("completed")),
        last_update=parse_utc_or_none(item.get("last_update")) or utcnow(),
    )
    return result.model_dump()


async def poll_scores(feed: Optional[BaseOddsFeed] = None) -> dict[str, Any]:
    feed = feed or odds_feed
    if not feed.enabled:
        return {"sports": 0, "results": 0}

    sports = await sports_with_recent_kickoffs()
    totals = SettlementStats()
    stored = 0
    for sport_key in sports:
        items = await feed.get_scores(sport_key, days_from=settings.ODDS_SCORES_DAYS_FROM)
        docs = [d for d in (to_result_doc(i) for i in items) if d is not None]
        completed = [d for d in docs if d["completed"]]
        if completed:
            ops = [UpdateOne({"event_id": d["event_id"]}, {"$set": d}, upsert=True) for d in completed]
            try:
                await _db.db.completed_results.bulk_write(ops, ordered=False)
            except BulkWriteError as exc:
                logger.error(
                    "Storing results for %s partially failed: %s",
                    sport_key, len((exc.details or {}).get("writeErrors", [])),
                )
            stored += len(completed)

        for doc in docs:
            scores = extract_scores(doc)
            if scores is not None:
                await apply_scores(doc["event_id"], *scores)
        for doc in completed:
            totals.add(await settle_result(doc))

    await set_synced("scores_poller", metrics={"sports": len(sports), "results": stored})
    if stored:
        logger.info("Scores poll: %d sports, %d completed results, settlement=%s", len(sports), stored, totals.to_dict())
    return {"sports": len(sports), "results": stored, "settlement": totals.to_dict()}

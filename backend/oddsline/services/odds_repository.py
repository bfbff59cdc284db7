"""
backend/oddsline/services/odds_repository.py

Purpose:
    Persistence access layer for full odds documents. Preloads stored docs by
    event id, merges through ``odds_merge`` and writes upserts in bounded,
    unordered batches with a pause between batches. A failing batch is logged
    and counted; later batches still run.

Dependencies:
    - oddsline.database
    - oddsline.services.odds_merge
    - oddsline.monitoring.pipeline_metrics
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from pymongo import UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

import oddsline.database as _db
from oddsline.config import settings
from oddsline.monitoring.pipeline_metrics import METRIC_MERGE_FAILED_BATCHES, METRIC_MERGE_WRITES
from oddsline.services.odds_merge import event_id_of, merge_event_document
from oddsline.utils import ensure_utc, utcnow

logger = logging.getLogger("oddsline.odds_repository")


def _comparable(value: Any) -> Any:
    # Mongo hands back naive UTC datetimes, nested ones included.
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, dict):
        return {k: _comparable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_comparable(v) for v in value]
    return value


def same_content(stored: dict[str, Any] | None, merged: dict[str, Any]) -> bool:
    """True when writing ``merged`` would change nothing but ``last_fetched``."""
    if not stored:
        return False
    return all(
        _comparable(stored.get(key)) == _comparable(value)
        for key, value in merged.items()
        if key != "last_fetched"
    )


@dataclass
class MergeStats:
    events: int = 0
    upserted: int = 0
    modified: int = 0
    matched: int = 0
    unchanged: int = 0
    failed_batches: int = 0
    write_errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class OddsRepository:
    def __init__(
        self,
        *,
        batch_size: int | None = None,
        batch_pause_seconds: float | None = None,
    ) -> None:
        self._batch_size = max(1, int(batch_size or settings.ODDS_WRITE_BATCH_SIZE))
        self._batch_pause = (
            settings.ODDS_WRITE_BATCH_PAUSE_SECONDS if batch_pause_seconds is None else batch_pause_seconds
        )

    async def load_existing(self, event_ids: list[str]) -> dict[str, dict[str, Any]]:
        if not event_ids:
            return {}
        docs = await _db.db.odds.find({"event_id": {"$in": event_ids}}).to_list(length=len(event_ids))
        return {str(doc["event_id"]): doc for doc in docs}

    async def find_recent(self, *, sport_key: str | None = None, limit: int = 250) -> list[dict[str, Any]]:
        query: dict[str, Any] = {}
        if sport_key:
            query["sport_key"] = sport_key
        cursor = _db.db.odds.find(query).sort("last_fetched", -1).limit(limit)
        return await cursor.to_list(length=limit)

    async def upsert_events(
        self,
        events: list[dict[str, Any]],
        *,
        now: datetime | None = None,
    ) -> tuple[MergeStats, list[dict[str, Any]]]:
        """Merge ``events`` onto stored odds and persist them.

        Returns aggregate write stats and the merged document of every event,
        including those left unwritten because nothing but the fetch time changed.
        """
        stats = MergeStats()
        now = now or utcnow()
        keyed = [(event_id_of(e), e) for e in events if isinstance(e, dict)]
        keyed = [(eid, e) for eid, e in keyed if eid]
        if not keyed:
            return stats, []

        existing = await self.load_existing(sorted({eid for eid, _ in keyed}))
        merged_by_id: dict[str, dict[str, Any]] = {}
        for event_id, event in keyed:
            base = merged_by_id.get(event_id) or existing.get(event_id)
            merged_by_id[event_id] = merge_event_document(base, event, now=now)

        docs = list(merged_by_id.values())
        stats.events = len(docs)
        # Unchanged events are not rewritten; last_fetched marks the last content change.
        changed = [doc for doc in docs if not same_content(existing.get(doc["event_id"]), doc)]
        stats.unchanged = len(docs) - len(changed)
        ops = [
            UpdateOne({"event_id": doc["event_id"]}, {"$set": doc}, upsert=True)
            for doc in changed
        ]

        for start in range(0, len(ops), self._batch_size):
            if start > 0 and self._batch_pause > 0:
                await asyncio.sleep(self._batch_pause)
            batch = ops[start:start + self._batch_size]
            await self._write_batch(batch, start // self._batch_size, stats)

        METRIC_MERGE_WRITES.labels(result="upserted").inc(stats.upserted)
        METRIC_MERGE_WRITES.labels(result="modified").inc(stats.modified)
        METRIC_MERGE_WRITES.labels(result="unchanged").inc(stats.unchanged)
        if stats.failed_batches:
            logger.warning(
                "Odds upsert finished with errors events=%d failed_batches=%d write_errors=%d",
                stats.events, stats.failed_batches, stats.write_errors,
            )
        return stats, docs

    async def _write_batch(self, batch: list[UpdateOne], batch_no: int, stats: MergeStats) -> None:
        try:
            result = await _db.db.odds.bulk_write(batch, ordered=False)
            stats.upserted += int(result.upserted_count or 0)
            stats.modified += int(result.modified_count or 0)
            stats.matched += int(result.matched_count or 0)
        except BulkWriteError as exc:
            # Unordered: sibling writes in the batch were still applied.
            details = exc.details or {}
            write_errors = details.get("writeErrors", [])
            stats.failed_batches += 1
            stats.write_errors += len(write_errors)
            stats.upserted += int(details.get("nUpserted", 0) or 0)
            stats.modified += int(details.get("nModified", 0) or 0)
            stats.matched += int(details.get("nMatched", 0) or 0)
            METRIC_MERGE_FAILED_BATCHES.inc()
            logger.error(
                "Odds batch %d partially failed: %d write errors (first: %s)",
                batch_no, len(write_errors), (write_errors[0].get("errmsg") if write_errors else ""),
            )
        except PyMongoError as exc:
            stats.failed_batches += 1
            stats.write_errors += len(batch)
            METRIC_MERGE_FAILED_BATCHES.inc()
            logger.error("Odds batch %d failed (%d ops): %s", batch_no, len(batch), exc)


odds_repository = OddsRepository()

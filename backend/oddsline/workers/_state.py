"""Persistent worker state: last successful sync per worker key.

Survives restarts so a redeploy does not immediately re-poll every sport.
Stored in the small ``worker_state`` collection.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

import oddsline.database as _db
from oddsline.utils import ensure_utc, utcnow


async def get_synced_at(worker_id: str) -> datetime | None:
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    return doc["synced_at"] if doc else None


async def set_synced(worker_id: str, *, metrics: Optional[dict[str, Any]] = None) -> None:
    """Mark a worker key as just synced, with optional run counters."""
    fields: dict[str, Any] = {"synced_at": utcnow()}
    if metrics:
        fields["last_metrics"] = metrics
    await _db.db.worker_state.update_one({"_id": worker_id}, {"$set": fields}, upsert=True)


async def recently_synced(worker_id: str, max_age: timedelta) -> bool:
    last = await get_synced_at(worker_id)
    if not last:
        return False
    return (utcnow() - ensure_utc(last)) < max_age

"""
backend/oddsline/services/lifecycle_service.py

Purpose:
    Time-driven match state machine and explicit cancel/postpone actions.

        upcoming --(now >= start)--> live --(now >= start + grace)--> finished
        any non-final state --(explicit action)--> cancelled | postponed

    The sweep only ever advances status. Each transition is a conditional
    update on the expected current status, so a concurrent writer (another
    sweep, a manual cancel) wins cleanly and the loser becomes a no-op.
    ``finished_at`` is set on entering ``finished`` and removed otherwise.

Dependencies:
    - oddsline.database
    - oddsline.services.event_bus
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from pymongo import ReturnDocument

import oddsline.database as _db
from oddsline.config import settings
from oddsline.models.match import SWEEPABLE_STATUSES, MatchStatus
from oddsline.monitoring.pipeline_metrics import METRIC_LIFECYCLE_TRANSITIONS
from oddsline.services.event_bus import event_bus
from oddsline.services.event_models import MatchLifecycleChangedEvent
from oddsline.utils import ensure_utc, utcnow

logger = logging.getLogger("oddsline.lifecycle")

_EXPLICIT_TARGETS = (MatchStatus.cancelled.value, MatchStatus.postponed.value)
_SWEEPABLE = [s.value for s in SWEEPABLE_STATUSES]


@dataclass
class Transition:
    match_id: Any
    external_id: Optional[str]
    from_status: str
    to_status: str
    doc: dict[str, Any]


def next_status(status: str, start_time: datetime, now: datetime, grace: timedelta) -> str:
    """Furthest status the clock allows from ``status``; unchanged if none."""
    start = ensure_utc(start_time)
    if status == MatchStatus.upcoming.value and now >= start:
        status = MatchStatus.live.value
    if status == MatchStatus.live.value and now >= start + grace:
        status = MatchStatus.finished.value
    return status


def plan_transitions(matches: Iterable[dict[str, Any]], now: datetime, grace: timedelta) -> list[Transition]:
    plan = []
    for doc in matches:
        current = doc.get("status")
        if current not in _SWEEPABLE or not doc.get("start_time"):
            continue
        target = next_status(current, doc["start_time"], now, grace)
        if target != current:
            plan.append(Transition(doc["_id"], doc.get("external_id"), current, target, doc))
    return plan


def _publish(doc: dict[str, Any], previous: Optional[str], new: str, finished_at: Optional[datetime]) -> None:
    event_bus.publish(
        MatchLifecycleChangedEvent(
            source="lifecycle",
            match_id=str(doc.get("external_id") or doc["_id"]),
            sport_key=doc.get("sport_key", ""),
            home_team=doc.get("home_team", ""),
            away_team=doc.get("away_team", ""),
            previous_status=previous,
            new_status=new,
            finished_at=finished_at,
            scores=doc.get("scores"),
        )
    )


async def run_lifecycle_sweep(*, now: datetime | None = None, grace: timedelta | None = None) -> dict[str, int]:
    """Advance every due match. Safe to run repeatedly."""
    now = now or utcnow()
    grace = grace if grace is not None else timedelta(hours=settings.MATCH_FINISH_GRACE_HOURS)
    due = await _db.db.matches.find({
        "status": {"$in": _SWEEPABLE},
        "start_time": {"$lte": now},
    }).to_list(length=5000)

    stats = {"checked": len(due), "live": 0, "finished": 0, "conflicts": 0}
    for t in plan_transitions(due, now, grace):
        update: dict[str, Any] = {"$set": {"status": t.to_status, "updated_at": now}}
        finished_at = None
        if t.to_status == MatchStatus.finished.value:
            finished_at = now
            update["$set"]["finished_at"] = now
        else:
            update["$unset"] = {"finished_at": ""}

        result = await _db.db.matches.update_one({"_id": t.match_id, "status": t.from_status}, update)
        if result.modified_count != 1:
            stats["conflicts"] += 1
            continue
        stats[t.to_status] += 1
        METRIC_LIFECYCLE_TRANSITIONS.labels(from_status=t.from_status, to_status=t.to_status).inc()
        _publish(t.doc, t.from_status, t.to_status, finished_at)

    if stats["live"] or stats["finished"]:
        logger.info("Lifecycle sweep: %s", stats)
    return stats


async def _set_explicit(external_id: str, target: str, reason: str) -> Optional[dict[str, Any]]:
    if target not in _EXPLICIT_TARGETS:
        raise ValueError(f"Unsupported explicit status {target!r}")
    now = utcnow()
    doc = await _db.db.matches.find_one_and_update(
        {"external_id": str(external_id), "status": {"$ne": target}},
        {
            "$set": {"status": target, "status_reason": reason, "updated_at": now},
            "$unset": {"finished_at": ""},
        },
        return_document=ReturnDocument.BEFORE,
    )
    if doc is None:
        logger.info("Match %s not moved to %s (missing or already there)", external_id, target)
        return None
    previous = doc.get("status")
    METRIC_LIFECYCLE_TRANSITIONS.labels(from_status=str(previous), to_status=target).inc()
    logger.info("Match %s %s -> %s (%s)", external_id, previous, target, reason or "no reason")
    _publish(doc, previous, target, None)
    doc.update({"status": target, "status_reason": reason, "updated_at": now})
    doc.pop("finished_at", None)
    return doc


async def cancel_match(external_id: str, *, reason: str = "") -> Optional[dict[str, Any]]:
    return await _set_explicit(external_id, MatchStatus.cancelled.value, reason)


async def postpone_match(external_id: str, *, reason: str = "") -> Optional[dict[str, Any]]:
    return await _set_explicit(external_id, MatchStatus.postponed.value, reason)

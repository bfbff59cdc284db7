"""
backend/oddsline/services/settlement_service.py

Purpose:
    Wager settlement against completed match results. For each result, finds
    pending wagers by exact external match id, then by case-insensitive team
    pair, evaluates each wager from its stored typed selection and applies the
    pending -> terminal transition as one conditional update. A wager that
    another settler already moved is left untouched.

    Exact line ties on totals/spreads settle as ``lost`` with ``push=True`` on
    the document so they can be audited and re-graded if refunds are adopted.

Dependencies:
    - oddsline.database
    - oddsline.services.selection_grammar
    - oddsline.services.ledger_service
    - oddsline.services.event_bus
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import oddsline.database as _db
from oddsline.config import settings
from oddsline.models.wager import Evaluation, MarketFamily, Side, WagerSelection, WagerStatus
from oddsline.monitoring.pipeline_metrics import METRIC_WAGERS_SETTLED, METRIC_WAGERS_UNPARSEABLE
from oddsline.services.event_bus import event_bus
from oddsline.services.event_models import WagerSettledEvent
from oddsline.services.ledger_service import BalanceLedger, balance_ledger
from oddsline.services.market_keys import market_family
from oddsline.services.selection_grammar import parse_selection
from oddsline.utils import ensure_utc, parse_utc_or_none, utcnow
from oddsline.utils.team_names import exact_name_pattern, same_team

logger = logging.getLogger("oddsline.settlement_service")


@dataclass
class SettlementStats:
    results: int = 0
    candidates: int = 0
    settled: int = 0
    won: int = 0
    lost: int = 0
    skipped: int = 0
    unparseable: int = 0
    errors: int = 0

    def add(self, other: "SettlementStats") -> None:
        for key, value in asdict(other).items():
            setattr(self, key, getattr(self, key) + value)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _to_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError):
            return 0


def extract_scores(result: dict[str, Any]) -> Optional[tuple[int, int]]:
    """(home, away) from a result's score list, or None when unusable.

    Entries are matched to teams by name; otherwise the first two entries are
    read as home and away. Unparseable scores count as 0.
    """
    scores = result.get("scores")
    if not isinstance(scores, list):
        return None
    home_team = result.get("home_team", "")
    away_team = result.get("away_team", "")
    home_entry = next((s for s in scores if isinstance(s, dict) and same_team(s.get("name", ""), home_team)), None)
    away_entry = next((s for s in scores if isinstance(s, dict) and same_team(s.get("name", ""), away_team)), None)
    if home_entry is not None and away_entry is not None:
        return _to_int(home_entry.get("score")), _to_int(away_entry.get("score"))
    if len(scores) >= 2 and all(isinstance(s, dict) for s in scores[:2]):
        return _to_int(scores[0].get("score")), _to_int(scores[1].get("score"))
    return None


def _selection_of(wager: dict[str, Any]) -> Optional[WagerSelection]:
    stored = wager.get("parsed")
    if isinstance(stored, dict):
        try:
            return WagerSelection.model_validate(stored)
        except ValueError:
            logger.warning("Stored selection on wager %s is invalid; re-parsing", wager.get("_id"))
    # Wagers written before selections were parsed at creation.
    family = wager.get("market_family") or market_family(wager.get("market", ""))
    return parse_selection(family, wager.get("selection", ""), wager.get("home_team", ""), wager.get("away_team", ""))


def _winner(side: str, home: int, away: int) -> bool:
    if side == Side.home.value:
        return home > away
    if side == Side.away.value:
        return away > home
    if side == Side.draw.value:
        return home == away
    return False


def evaluate_wager(wager: dict[str, Any], home_score: int, away_score: int) -> Evaluation:
    """Grade one wager against a final score. Never raises."""
    selection = _selection_of(wager)
    if selection is None:
        return Evaluation(
            status=WagerStatus.lost,
            unparseable=True,
            reason=f"unparseable selection {wager.get('selection')!r}",
        )

    family = selection.family
    side = selection.side
    if wager.get("market_family") == MarketFamily.other.value:
        logger.warning(
            "Unknown market %r on wager %s; grading as match winner",
            wager.get("market"), wager.get("_id"),
        )

    if family == MarketFamily.spreads.value:
        line = selection.line or 0.0
        if side == Side.home.value:
            adjusted, opponent = home_score + line, away_score
        else:
            adjusted, opponent = away_score + line, home_score
        if adjusted == opponent:
            return Evaluation(status=WagerStatus.lost, push=True, reason=f"spread tie at {line:+g}")
        won = adjusted > opponent
        return Evaluation(status=WagerStatus.won if won else WagerStatus.lost, reason=f"spread {line:+g}")

    if family == MarketFamily.totals.value:
        line = selection.line or 0.0
        total = home_score + away_score
        if total == line:
            return Evaluation(status=WagerStatus.lost, push=True, reason=f"total tie at {line:g}")
        won = total > line if side == Side.over.value else total < line
        return Evaluation(status=WagerStatus.won if won else WagerStatus.lost, reason=f"total {total} vs {line:g}")

    won = _winner(side, home_score, away_score)
    return Evaluation(status=WagerStatus.won if won else WagerStatus.lost, reason=f"winner {side}")


async def _known_start(match_id: str, cache: dict[str, Optional[datetime]]) -> Optional[datetime]:
    if match_id not in cache:
        match = await _db.db.matches.find_one({"external_id": match_id}, {"start_time": 1})
        cache[match_id] = ensure_utc(match["start_time"]) if match and match.get("start_time") else None
    return cache[match_id]


async def find_matching_wagers(result: dict[str, Any]) -> list[dict[str, Any]]:
    """Pending wagers for a result: exact event id first, team pair second.

    Team-pair candidates that reference a known match starting after this
    result's kickoff belong to a later fixture of the same pairing and are
    excluded.
    """
    event_id = str(result.get("event_id") or "")
    wagers: list[dict[str, Any]] = []
    seen: set[Any] = set()

    if event_id:
        async for wager in _db.db.wagers.find({"match_id": event_id, "status": WagerStatus.pending.value}):
            seen.add(wager["_id"])
            wagers.append(wager)

    home_team = result.get("home_team", "")
    away_team = result.get("away_team", "")
    if not home_team or not away_team:
        return wagers

    commence = parse_utc_or_none(result.get("commence_time"))
    starts: dict[str, Optional[datetime]] = {}
    query = {
        "status": WagerStatus.pending.value,
        "$and": [
            {"home_team": exact_name_pattern(home_team)},
            {"away_team": exact_name_pattern(away_team)},
        ],
    }
    async for wager in _db.db.wagers.find(query):
        if wager["_id"] in seen:
            continue
        other_id = str(wager.get("match_id") or "")
        if commence is not None and other_id and other_id != event_id:
            start = await _known_start(other_id, starts)
            if start is not None and start > commence:
                continue
        seen.add(wager["_id"])
        wagers.append(wager)
    return wagers


async def settle_wager(
    wager: dict[str, Any],
    home_score: int,
    away_score: int,
    *,
    ledger: BalanceLedger | None = None,
    now: datetime | None = None,
) -> Optional[dict[str, Any]]:
    """Evaluate and settle one wager. Returns the settled doc, or None if it was no longer pending."""
    ledger = ledger or balance_ledger
    now = now or utcnow()
    evaluation = evaluate_wager(wager, home_score, away_score)
    if evaluation.unparseable:
        METRIC_WAGERS_UNPARSEABLE.inc()
        logger.warning(
            "Settling wager %s as lost for manual audit: %s", wager.get("_id"), evaluation.reason,
        )

    won = evaluation.status == WagerStatus.won.value
    payout = float(wager.get("potential_payout") or 0.0) if won else 0.0
    settled = await _db.db.wagers.find_one_and_update(
        {"_id": wager["_id"], "status": WagerStatus.pending.value},
        {"$set": {
            "status": evaluation.status,
            "actual_payout": payout,
            "settled_at": now,
            "push": evaluation.push,
            "needs_audit": evaluation.unparseable or evaluation.push,
            "result": {"home_score": home_score, "away_score": away_score, "reason": evaluation.reason},
        }},
        return_document=ReturnDocument.AFTER,
    )
    if settled is None:
        logger.debug("Wager %s already settled elsewhere", wager.get("_id"))
        return None

    METRIC_WAGERS_SETTLED.labels(status=evaluation.status).inc()
    if won and payout > 0:
        try:
            await ledger.credit_payout(
                str(settled.get("user_id", "")),
                payout,
                reference=f"wager:{settled['_id']}",
                description=f"Payout {settled.get('home_team', '')} vs {settled.get('away_team', '')}",
            )
        except PyMongoError:
            logger.exception("Payout credit failed for wager %s; ledger needs reconciliation", settled["_id"])

    event_bus.publish(
        WagerSettledEvent(
            source="settlement_service",
            wager_id=str(settled["_id"]),
            user_id=str(settled.get("user_id", "")),
            match_id=str(settled.get("match_id", "")),
            status=evaluation.status,
            actual_payout=payout,
            settled_at=now,
            home_score=home_score,
            away_score=away_score,
            push=evaluation.push,
        )
    )
    return settled


async def settle_result(
    result: dict[str, Any],
    *,
    ledger: BalanceLedger | None = None,
    now: datetime | None = None,
) -> SettlementStats:
    stats = SettlementStats(results=1)
    if not result.get("completed", True):
        return stats
    scores = extract_scores(result)
    if scores is None:
        logger.warning("Result %s has no usable scores; wagers stay pending", result.get("event_id"))
        return stats
    home_score, away_score = scores

    wagers = await find_matching_wagers(result)
    stats.candidates = len(wagers)
    if wagers:
        logger.info(
            "Settling %d wagers for %s (%s vs %s, %d-%d)",
            len(wagers), result.get("event_id"), result.get("home_team"), result.get("away_team"),
            home_score, away_score,
        )
    for wager in wagers:
        try:
            settled = await settle_wager(wager, home_score, away_score, ledger=ledger, now=now)
        except PyMongoError:
            stats.errors += 1
            logger.exception("Failed to settle wager %s", wager.get("_id"))
            continue
        if settled is None:
            stats.skipped += 1
            continue
        stats.settled += 1
        if settled.get("status") == WagerStatus.won.value:
            stats.won += 1
        else:
            stats.lost += 1
        if settled.get("needs_audit") and not settled.get("push"):
            stats.unparseable += 1
    return stats


async def settle_pending_results(*, lookback_days: int | None = None) -> dict[str, int]:
    """Settlement pass over recently completed results."""
    days = settings.SETTLEMENT_LOOKBACK_DAYS if lookback_days is None else lookback_days
    since = utcnow() - timedelta(days=days)
    totals = SettlementStats()
    async for result in _db.db.completed_results.find({"completed": True, "last_update": {"$gte": since}}):
        try:
            totals.add(await settle_result(result))
        except PyMongoError:
            totals.errors += 1
            logger.exception("Settlement failed for result %s", result.get("event_id"))
    if totals.settled:
        logger.info("Settlement pass: %s", totals.to_dict())
    return totals.to_dict()

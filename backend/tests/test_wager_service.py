"""
backend/tests/test_wager_service.py

Purpose:
    Wager creation parses the selection once and rejects unparseable text;
    cancellation only applies to pending wagers.
"""

from __future__ import annotations

import sys

import pytest
from bson import ObjectId

sys.path.insert(0, "backend")

from mongo_fakes import FakeCollection, FakeDB
from oddsline.services import wager_service
from oddsline.services.wager_service import InvalidSelection, build_wager


def test_build_wager_stores_parsed_selection_and_payout():
    wager = build_wager(
        user_id="u1", match_id="ev1", market="Over Under", selection="Over 2.5",
        stake=10, odds=1.95, home_team="Arsenal", away_team="Chelsea",
    )
    assert wager.market == "totals"
    assert wager.market_family == "totals"
    assert wager.parsed.side == "over"
    assert wager.parsed.line == 2.5
    assert wager.potential_payout == 19.5
    assert wager.status == "pending"


def test_build_wager_rejects_unparseable_selection():
    with pytest.raises(InvalidSelection):
        build_wager(
            user_id="u1", match_id="ev1", market="totals", selection="lots of goals",
            stake=10, odds=1.95, home_team="Arsenal", away_team="Chelsea",
        )


@pytest.mark.asyncio
async def test_place_wager_copies_team_names(monkeypatch):
    fake_db = FakeDB(
        matches=FakeCollection([{"external_id": "ev1", "home_team": "Arsenal", "away_team": "Chelsea"}]),
        wagers=FakeCollection([]),
    )
    monkeypatch.setattr(wager_service._db, "db", fake_db, raising=False)

    doc = await wager_service.place_wager(
        user_id="u1", match_id="ev1", market="h2h", selection="Chelsea", stake=5, odds=3.0,
    )

    stored = fake_db.wagers.docs[0]
    assert stored["_id"] == doc["_id"]
    assert stored["home_team"] == "Arsenal"
    assert stored["parsed"]["side"] == "away"


@pytest.mark.asyncio
async def test_place_wager_on_unknown_match(monkeypatch):
    monkeypatch.setattr(wager_service._db, "db", FakeDB(matches=FakeCollection([])), raising=False)

    with pytest.raises(LookupError):
        await wager_service.place_wager(
            user_id="u1", match_id="nope", market="h2h", selection="home", stake=5, odds=3.0,
        )


@pytest.mark.asyncio
async def test_cancel_only_pending(monkeypatch):
    pending_id, won_id = ObjectId(), ObjectId()
    fake_db = FakeDB(wagers=FakeCollection([
        {"_id": pending_id, "status": "pending"},
        {"_id": won_id, "status": "won", "actual_payout": 20.0},
    ]))
    monkeypatch.setattr(wager_service._db, "db", fake_db, raising=False)

    cancelled = await wager_service.cancel_wager(str(pending_id), reason="match abandoned")
    refused = await wager_service.cancel_wager(str(won_id))

    assert cancelled["status"] == "cancelled"
    assert cancelled["cancel_reason"] == "match abandoned"
    assert refused is None
    assert fake_db.wagers.docs[1]["actual_payout"] == 20.0

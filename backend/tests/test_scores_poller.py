"""
backend/tests/test_scores_poller.py

Purpose:
    Scores polling: only sports with recent kickoffs are queried, completed
    results are stored once, scores are copied onto matches and wagers are
    settled in the same pass.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, "backend")

from mongo_fakes import FakeCollection, FakeDB
from oddsline.providers.base import BaseOddsFeed
from oddsline.services import settlement_service
from oddsline.services.wager_service import build_wager
from oddsline.workers import scores_poller


class _ScoresFeed(BaseOddsFeed):
    def __init__(self, items):
        self._items = items
        self.requested: list[str] = []

    @property
    def enabled(self):
        return True

    async def get_sports(self):
        return []

    async def get_odds(self, sport_key, markets, *, bookmakers=None, regions=None):
        return []

    async def get_scores(self, sport_key, days_from=3):
        self.requested.append(sport_key)
        return self._items.get(sport_key, [])


def test_to_result_doc_normalizes_scores():
    doc = scores_poller.to_result_doc({
        "id": "ev1",
        "sport_key": "soccer_epl",
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "commence_time": "2026-03-01T15:00:00Z",
        "completed": True,
        "scores": [{"name": "Arsenal", "score": 2}, {"name": "Chelsea", "score": None}, "junk"],
        "last_update": "2026-03-01T17:00:00Z",
    })
    assert doc["scores"] == [{"name": "Arsenal", "score": "2"}, {"name": "Chelsea", "score": None}]
    assert doc["commence_time"] == datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)
    assert scores_poller.to_result_doc({"id": "ev2", "scores": None}) is None


@pytest.mark.asyncio
async def test_poll_stores_results_updates_matches_and_settles(monkeypatch):
    now = datetime.now(timezone.utc)
    wager = build_wager(
        user_id="u1", match_id="ev1", market="h2h", selection="home",
        stake=10, odds=2.0, home_team="Arsenal", away_team="Chelsea",
    ).model_dump()
    fake_db = FakeDB(
        matches=FakeCollection([
            {"external_id": "ev1", "sport_key": "soccer_epl", "status": "live", "start_time": now - timedelta(hours=2)},
            {"external_id": "ev2", "sport_key": "soccer_epl", "status": "live", "start_time": now - timedelta(minutes=30)},
            {"external_id": "old", "sport_key": "basketball_nba", "status": "finished", "start_time": now - timedelta(days=20)},
        ]),
        wagers=FakeCollection([wager]),
        completed_results=FakeCollection([]),
    )
    monkeypatch.setattr(scores_poller._db, "db", fake_db, raising=False)
    monkeypatch.setattr(settlement_service.event_bus, "publish", lambda e: True)
    feed = _ScoresFeed({
        "soccer_epl": [
            {
                "id": "ev1", "sport_key": "soccer_epl", "home_team": "Arsenal", "away_team": "Chelsea",
                "commence_time": (now - timedelta(hours=2)).isoformat(), "completed": True,
                "scores": [{"name": "Arsenal", "score": "2"}, {"name": "Chelsea", "score": "0"}],
            },
            {
                "id": "ev2", "sport_key": "soccer_epl", "home_team": "Spurs", "away_team": "Leeds",
                "completed": False,
                "scores": [{"name": "Spurs", "score": "1"}, {"name": "Leeds", "score": "1"}],
            },
        ],
    })

    result = await scores_poller.poll_scores(feed)

    assert feed.requested == ["soccer_epl"]
    assert result["results"] == 1
    assert [d["event_id"] for d in fake_db.completed_results.docs] == ["ev1"]
    by_ext = {m["external_id"]: m for m in fake_db.matches.docs}
    assert by_ext["ev1"]["scores"] == {"home": 2, "away": 0}
    assert by_ext["ev2"]["scores"] == {"home": 1, "away": 1}
    assert by_ext["ev2"]["status"] == "live"
    assert fake_db.wagers.docs[0]["status"] == "won"
    assert result["settlement"]["won"] == 1

"""
backend/tests/test_odds_poller.py

Purpose:
    Odds poll orchestration: market chunking with pauses, primary/fallback
    bookmaker lists, mirroring stored odds when the feed yields nothing, the
    skip right after a recent poll and the disabled-feed short circuit.
"""

from __future__ import annotations

import sys

import pytest

sys.path.insert(0, "backend")

from oddsline.providers.base import BaseOddsFeed
from oddsline.workers import odds_poller


class _ScriptedFeed(BaseOddsFeed):
    def __init__(self, responses=None, *, enabled=True):
        self._responses = responses or {}
        self._enabled = enabled
        self.calls: list[tuple[str, tuple[str, ...], tuple[str, ...] | None]] = []

    @property
    def enabled(self):
        return self._enabled

    @property
    def quota(self):
        return {"requests_used": 7, "requests_remaining": 93}

    async def get_sports(self):
        return [{"key": "soccer_epl"}, {"key": "basketball_nba"}]

    async def get_odds(self, sport_key, markets, *, bookmakers=None, regions=None):
        books = tuple(bookmakers) if bookmakers else None
        self.calls.append((sport_key, tuple(markets), books))
        return self._responses.get((sport_key, tuple(markets), books), [])

    async def get_scores(self, sport_key, days_from=3):
        return []


def _event(event_id, market_key):
    return {
        "id": event_id,
        "sport_key": "soccer_epl",
        "commence_time": "2026-03-02T15:00:00Z",
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "bookmakers": [{
            "key": "pinnacle",
            "title": "Pinnacle",
            "markets": [{"key": market_key, "outcomes": [{"name": "Over", "price": 1.9, "point": 2.5}]}],
        }],
    }


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def poll_settings(monkeypatch):
    s = odds_poller.settings
    monkeypatch.setattr(s, "ODDS_SPORTS", "soccer_epl,basketball_nba")
    monkeypatch.setattr(s, "ODDS_MARKETS", "h2h,spreads,totals")
    monkeypatch.setattr(s, "ODDS_MARKETS_PER_REQUEST", 2)
    monkeypatch.setattr(s, "ODDS_PRIMARY_BOOKMAKERS", "pinnacle")
    monkeypatch.setattr(s, "ODDS_FALLBACK_BOOKMAKERS", "bet365,unibet")
    monkeypatch.setattr(s, "ODDS_CHUNK_DELAY_SECONDS", 2.0)
    monkeypatch.setattr(s, "ODDS_SPORT_DELAY_SECONDS", 3.0)
    return s


@pytest.fixture
def recorded(monkeypatch):
    record = {"ingested": [], "mirrored": [], "synced": [], "recent": False}

    async def fake_ingest(sport_key, events, **kwargs):
        record["ingested"].append((sport_key, events))
        return {"sport_key": sport_key, "events": len(events), "upserted": len(events), "modified": 0, "failed_batches": 0}

    async def fake_mirror(sport_key):
        record["mirrored"].append(sport_key)
        return {"mirrored": 4, "inserted": 0, "errors": 0}

    async def fake_synced(worker_id, *, metrics=None):
        record["synced"].append(worker_id)

    async def fake_recent(worker_id, max_age):
        return record["recent"]

    monkeypatch.setattr(odds_poller, "ingest_events", fake_ingest)
    monkeypatch.setattr(odds_poller, "mirror_saved_odds", fake_mirror)
    monkeypatch.setattr(odds_poller, "set_synced", fake_synced)
    monkeypatch.setattr(odds_poller, "recently_synced", fake_recent)
    return record


def test_market_chunks():
    assert odds_poller.market_chunks(["h2h", "spreads", "totals"], 2) == [["h2h", "spreads"], ["totals"]]
    assert odds_poller.market_chunks(["h2h"], 0) == [["h2h"]]
    assert odds_poller.market_chunks([], 3) == []


@pytest.mark.asyncio
async def test_poll_chunks_markets_and_falls_back_to_secondary_bookmakers(poll_settings, recorded):
    feed = _ScriptedFeed({
        ("soccer_epl", ("h2h", "spreads"), ("pinnacle",)): [_event("ev1", "h2h")],
        ("soccer_epl", ("totals",), ("bet365", "unibet")): [_event("ev1", "totals")],
    })
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    totals = await odds_poller.poll_odds(feed, sleep=fake_sleep)

    assert feed.calls[:3] == [
        ("soccer_epl", ("h2h", "spreads"), ("pinnacle",)),
        ("soccer_epl", ("totals",), ("pinnacle",)),
        ("soccer_epl", ("totals",), ("bet365", "unibet")),
    ]
    # chunk pause within soccer, sport pause, chunk pause within nba
    assert sleeps == [2.0, 3.0, 2.0]

    sport_key, events = recorded["ingested"][0]
    assert sport_key == "soccer_epl"
    assert len(events) == 1
    market_keys = {m["key"] for m in events[0]["bookmakers"][0]["markets"]}
    assert market_keys == {"h2h", "totals"}

    # nba yielded nothing from either list
    assert recorded["mirrored"] == ["basketball_nba"]
    assert totals["sports"] == 2
    assert totals["events"] == 1
    assert totals["mirrored_from_store"] == 4
    assert recorded["synced"] == ["odds:soccer_epl", "odds_poller"]


@pytest.mark.asyncio
async def test_sports_are_discovered_when_not_configured(poll_settings, recorded, monkeypatch):
    monkeypatch.setattr(poll_settings, "ODDS_SPORTS", "")
    feed = _ScriptedFeed()

    assert await odds_poller.resolve_sports(feed) == ["soccer_epl", "basketball_nba"]


@pytest.mark.asyncio
async def test_disabled_feed_skips_poll(poll_settings, recorded):
    feed = _ScriptedFeed(enabled=False)

    totals = await odds_poller.poll_odds(feed)

    assert totals == {"sports": 0, "events": 0}
    assert feed.calls == []
    assert recorded["synced"] == []


@pytest.mark.asyncio
async def test_recent_sync_skips_unless_forced(poll_settings, recorded):
    recorded["recent"] = True
    feed = _ScriptedFeed()

    skipped = await odds_poller.poll_odds(feed, sleep=_no_sleep)
    forced = await odds_poller.poll_odds(feed, sleep=_no_sleep, force=True)

    assert skipped["skipped"] is True
    assert forced["sports"] == 2
    assert {call[0] for call in feed.calls} == {"soccer_epl", "basketball_nba"}

"""
backend/tests/test_feed_client.py

Purpose:
    Odds feed client behaviour against a mocked transport: request shape,
    quota tracking, bounded retries and graceful degradation to the
    last-known-good snapshot or an empty list.
"""

from __future__ import annotations

import json
import sys

import httpx
import pytest

sys.path.insert(0, "backend")

from oddsline.providers.http_client import CircuitBreaker, ResilientClient
from oddsline.providers.odds_api import OddsFeedClient
from oddsline.providers.throttle import FeedThrottle
from oddsline.services.cache import TTLCache

EVENT = {
    "id": "ev1",
    "sport_key": "soccer_epl",
    "commence_time": "2026-03-01T15:00:00Z",
    "home_team": "Arsenal",
    "away_team": "Chelsea",
    "bookmakers": [],
}


def _feed(handler, *, api_key="secret", snapshot_path="", max_retries=1, excluded_sports=(), circuit=None) -> OddsFeedClient:
    client = ResilientClient(
        "test_feed", max_retries=max_retries, base_delay=0, transport=httpx.MockTransport(handler), circuit=circuit,
    )
    return OddsFeedClient(
        api_key=api_key,
        base_url="https://feed.test/v4",
        regions="eu",
        client=client,
        throttle=FeedThrottle(0),
        cache=TTLCache(ttl=60),
        snapshot_path=snapshot_path,
        excluded_sports=list(excluded_sports),
        persist_usage=False,
    )


@pytest.mark.asyncio
async def test_missing_key_disables_client_without_requests():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=[])

    feed = _feed(handler, api_key="")

    assert feed.enabled is False
    assert await feed.get_odds("soccer_epl", ["h2h"]) == []
    assert await feed.get_sports() == []
    assert await feed.get_scores("soccer_epl") == []
    assert calls == []


@pytest.mark.asyncio
async def test_odds_request_shape_and_quota_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json=[EVENT], headers={"x-requests-used": "12", "x-requests-remaining": "488"},
        )

    feed = _feed(handler)
    events = await feed.get_odds("soccer_epl", ["h2h", "totals"])

    assert events == [EVENT]
    request = seen[0]
    assert request.url.path == "/v4/sports/soccer_epl/odds"
    assert request.url.params["apiKey"] == "secret"
    assert request.url.params["markets"] == "h2h,totals"
    assert request.url.params["regions"] == "eu"
    assert request.url.params["oddsFormat"] == "decimal"
    assert feed.quota["requests_used"] == 12
    assert feed.quota["requests_remaining"] == 488


@pytest.mark.asyncio
async def test_bookmakers_replace_regions():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    feed = _feed(handler)
    await feed.get_odds("soccer_epl", ["h2h"], bookmakers=["pinnacle", "betfair_ex_eu"])

    params = seen[0].url.params
    assert params["bookmakers"] == "pinnacle,betfair_ex_eu"
    assert "regions" not in params


@pytest.mark.asyncio
async def test_auth_failure_serves_snapshot(tmp_path):
    snapshot = tmp_path / "snapshot.json"
    snapshot.write_text(json.dumps({"soccer_epl": [dict(EVENT, id="snap1")], "basketball_nba": [dict(EVENT, id="nba1")]}))
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"message": "quota exhausted"})

    feed = _feed(handler, snapshot_path=str(snapshot))
    events = await feed.get_odds("soccer_epl", ["h2h"])

    assert [e["id"] for e in events] == ["snap1"]
    assert len(calls) == 2
    nba = await feed.get_odds("basketball_nba", ["h2h"])
    assert [(e["id"], e["sport_key"]) for e in nba] == [("nba1", "basketball_nba")]


@pytest.mark.asyncio
async def test_server_failure_without_snapshot_is_empty():
    def handler(request):
        return httpx.Response(503)

    feed = _feed(handler)

    assert await feed.get_odds("soccer_epl", ["h2h"]) == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    responses = iter([httpx.Response(502), httpx.Response(200, json=[EVENT])])

    def handler(request):
        return next(responses)

    feed = _feed(handler)

    assert await feed.get_odds("soccer_epl", ["h2h"]) == [EVENT]


@pytest.mark.asyncio
async def test_client_error_is_not_retried_or_answered_from_snapshot(tmp_path):
    snapshot = tmp_path / "snapshot.json"
    snapshot.write_text(json.dumps([EVENT]))

    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"message": "unknown market"})

    feed = _feed(handler, snapshot_path=str(snapshot), max_retries=3)

    assert await feed.get_odds("soccer_epl", ["bogus_market"]) == []
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_sports_discovery_filters_inactive_and_excluded():
    def handler(request):
        return httpx.Response(200, json=[
            {"key": "soccer_epl", "active": True},
            {"key": "politics_us_presidential_election_winner", "active": True},
            {"key": "basketball_nba", "active": False},
            {"key": "icehockey_nhl", "active": True},
        ])

    feed = _feed(handler, excluded_sports=["icehockey_nhl"])

    assert [s["key"] for s in await feed.get_sports()] == ["soccer_epl"]


@pytest.mark.asyncio
async def test_scores_clamp_days_from():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    feed = _feed(handler)
    await feed.get_scores("soccer_epl", days_from=9)

    assert seen[0].url.path == "/v4/sports/soccer_epl/scores"
    assert seen[0].url.params["daysFrom"] == "3"


@pytest.mark.asyncio
async def test_second_call_within_ttl_is_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=[EVENT])

    feed = _feed(handler)
    await feed.get_odds("soccer_epl", ["h2h"])
    await feed.get_odds("soccer_epl", ["h2h"])

    assert len(calls) == 1


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_circuit_breaker_opens_retries_and_closes():
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=clock)

    breaker.record_failure()
    assert breaker.state == "closed"
    breaker.record_failure()
    assert breaker.state == "open"
    assert breaker.can_attempt() is False

    clock.now += 61
    assert breaker.can_attempt() is True
    breaker.record_failure()
    assert breaker.state == "open"

    clock.now += 61
    breaker.record_success()
    assert breaker.state == "closed"
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_open_circuit_skips_upstream_until_recovery():
    clock = _Clock()
    calls = []
    statuses = iter([503, 503, 200])

    def handler(request):
        calls.append(request.url.path)
        status = next(statuses)
        return httpx.Response(status, json=[EVENT] if status == 200 else None)

    feed = _feed(handler, circuit=CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock))

    assert await feed.get_odds("soccer_epl", ["h2h"]) == []
    assert feed.circuit_state == "open"
    assert await feed.get_odds("soccer_spain_la_liga", ["h2h"]) == []
    assert len(calls) == 2

    clock.now += 31
    assert await feed.get_odds("soccer_germany_bundesliga", ["h2h"]) == [EVENT]
    assert feed.circuit_state == "closed"
    assert len(calls) == 3

"""
backend/tests/test_event_bus.py

Purpose:
    Unit tests for the in-memory event bus implementation.
"""

from __future__ import annotations

import asyncio
import sys

import pytest

sys.path.insert(0, "backend")

from oddsline.services.event_bus import InMemoryEventBus
from oddsline.services.event_models import EventType, MatchLifecycleChangedEvent, OddsUpdatedEvent, WagerSettledEvent
from oddsline.utils import utcnow


def _lifecycle_event(match_id: str = "ev1", correlation_id: str = "corr-1") -> MatchLifecycleChangedEvent:
    return MatchLifecycleChangedEvent(
        source="test",
        correlation_id=correlation_id,
        match_id=match_id,
        previous_status="live",
        new_status="finished",
    )


@pytest.mark.asyncio
async def test_event_bus_fanout_and_correlation() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    seen: list[tuple[str, str]] = []

    async def handler_a(event):
        seen.append(("a", event.correlation_id))

    async def handler_b(event):
        seen.append(("b", event.correlation_id))

    bus.subscribe(EventType.match_lifecycle_changed, handler_a, handler_name="a", concurrency=1)
    bus.subscribe("match.lifecycle_changed", handler_b, handler_name="b", concurrency=1)
    await bus.start()

    assert bus.publish(_lifecycle_event()) is True
    await asyncio.sleep(0.05)
    await bus.stop()

    assert ("a", "corr-1") in seen
    assert ("b", "corr-1") in seen
    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["handled_total"] == 2
    assert stats["failed_total"] == 0
    assert stats["per_event_type"]["match.lifecycle_changed"]["published"] == 1


@pytest.mark.asyncio
async def test_event_bus_handler_failure_isolated() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    success_calls = 0

    async def failing(_event):
        raise RuntimeError("boom")

    async def success(_event):
        nonlocal success_calls
        success_calls += 1

    bus.subscribe(EventType.match_lifecycle_changed, failing, handler_name="failing", concurrency=1)
    bus.subscribe(EventType.match_lifecycle_changed, success, handler_name="success", concurrency=1)
    await bus.start()
    bus.publish(_lifecycle_event(correlation_id="corr-2"))
    await asyncio.sleep(0.05)
    await bus.stop()

    stats = bus.stats()
    assert success_calls == 1
    assert stats["failed_total"] == 1
    assert stats["recent_errors"][0]["handler_name"] == "failing"


@pytest.mark.asyncio
async def test_event_bus_overflow_drops_without_blocking() -> None:
    bus = InMemoryEventBus(ingress_maxsize=1, handler_maxsize=1, default_concurrency=1, error_buffer_size=10)
    event = _lifecycle_event()
    assert bus.publish(event) is True
    assert bus.publish(event.model_copy(update={"event_id": "evt-2"})) is False

    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["dropped_total"] == 1


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_block_publisher() -> None:
    bus = InMemoryEventBus(ingress_maxsize=100, handler_maxsize=2, default_concurrency=1, error_buffer_size=10)
    gate = asyncio.Event()

    async def stuck(_event):
        await gate.wait()

    bus.subscribe(EventType.odds_updated, stuck, handler_name="stuck", concurrency=1)
    await bus.start()
    for idx in range(10):
        assert bus.publish(OddsUpdatedEvent(source="test", sport_key="soccer_epl", event_ids=[f"e{idx}"])) is True
    await asyncio.sleep(0.05)

    stats = bus.stats()
    assert stats["published_total"] == 10
    assert stats["per_handler"]["odds.updated:stuck"]["dropped_total"] >= 1
    gate.set()
    await bus.stop()


@pytest.mark.asyncio
async def test_zero_subscribers_is_fine() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    await bus.start()
    assert bus.publish(OddsUpdatedEvent(source="test", sport_key="soccer_epl")) is True
    await asyncio.sleep(0.01)
    await bus.stop()
    assert bus.stats()["handled_total"] == 0


def test_disabled_bus_discards() -> None:
    bus = InMemoryEventBus(
        ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10, enabled=False,
    )
    assert bus.publish(OddsUpdatedEvent(source="test", sport_key="soccer_epl")) is False
    assert bus.stats()["published_total"] == 0


def test_subscribe_rejects_unknown_event_type() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)

    async def handler(_event):
        return None

    with pytest.raises(ValueError):
        bus.subscribe("match.exploded", handler, handler_name="x")


@pytest.mark.asyncio
async def test_drain_waits_for_queued_events_then_times_out_when_stuck() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    handled: list[str] = []
    release = asyncio.Event()

    async def slow(event):
        await asyncio.sleep(0.02)
        handled.append(event.match_id)

    async def blocked(_event):
        await release.wait()

    bus.subscribe(EventType.match_lifecycle_changed, slow, handler_name="slow", concurrency=1)
    bus.subscribe(EventType.wager_settled, blocked, handler_name="blocked", concurrency=1)
    await bus.start()

    for match_id in ("ev1", "ev2", "ev3"):
        bus.publish(_lifecycle_event(match_id=match_id))
    drained = await bus.drain(timeout=2.0)

    assert drained is True
    assert handled == ["ev1", "ev2", "ev3"]

    bus.publish(WagerSettledEvent(
        source="test", wager_id="w1", user_id="u1", match_id="ev9", status="won",
        settled_at=utcnow(), home_score=2, away_score=1,
    ))
    stuck = await bus.drain(timeout=0.05)
    assert stuck is False
    assert bus.stats()["in_flight"] == 1

    release.set()
    await bus.stop()

"""
backend/oddsline/services/event_models.py

Purpose:
    Domain event contracts for in-process fan-out. A closed set of event
    types, each with a typed payload, published by the merge engine, the
    lifecycle manager and the settlement engine.

Dependencies:
    - pydantic
    - oddsline.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from oddsline.utils import ensure_utc, utcnow


class EventType(str, Enum):
    odds_updated = "odds.updated"
    match_lifecycle_changed = "match.lifecycle_changed"
    wager_settled = "wager.settled"


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class OddsUpdatedEvent(BaseEvent):
    event_type: Literal[EventType.odds_updated] = EventType.odds_updated
    sport_key: str
    event_ids: list[str] = Field(default_factory=list)
    upserted: int = 0
    modified: int = 0
    failed_batches: int = 0


class MatchLifecycleChangedEvent(BaseEvent):
    event_type: Literal[EventType.match_lifecycle_changed] = EventType.match_lifecycle_changed
    match_id: str                          # external id when present, else internal id
    sport_key: str = ""
    home_team: str = ""
    away_team: str = ""
    previous_status: str | None = None
    new_status: str
    finished_at: datetime | None = None
    scores: dict[str, int] | None = None


class WagerSettledEvent(BaseEvent):
    event_type: Literal[EventType.wager_settled] = EventType.wager_settled
    wager_id: str
    user_id: str
    match_id: str
    status: str
    actual_payout: float = 0.0
    settled_at: datetime
    home_score: int
    away_score: int
    push: bool = False


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event

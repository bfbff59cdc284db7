from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel


class MatchStatus(str, Enum):
    upcoming = "upcoming"
    live = "live"
    finished = "finished"
    cancelled = "cancelled"
    postponed = "postponed"


# Statuses the time-driven sweep may still advance.
SWEEPABLE_STATUSES = (MatchStatus.upcoming, MatchStatus.live)


class OddsProjection(BaseModel):
    """Sparse display odds taken from the first bookmaker carrying each market."""
    h2h: Dict[str, float] = {}           # {"1": 1.85, "X": 3.4, "2": 4.1}
    totals: Dict[str, float] = {}        # {"line": 2.5, "over": 1.85, "under": 2.05}
    spreads: Dict[str, float] = {}       # {"home_line": -5.5, "home_odds": 1.91, ...}
    updated_at: Optional[datetime] = None


class MatchScores(BaseModel):
    home: int = 0
    away: int = 0


class MatchRecord(BaseModel):
    """Canonical match document as stored in MongoDB.

    A document matures through: upcoming -> live -> finished. Cancellation and
    postponement are explicit actions only. ``finished_at`` is set only while
    status is ``finished``.
    """
    external_id: Optional[str] = None     # odds event id (sparse unique)
    sport: str                            # internal family: soccer, basketball, ...
    sport_key: str
    home_team: str
    away_team: str
    start_time: datetime
    status: MatchStatus = MatchStatus.upcoming
    scores: Optional[MatchScores] = None
    finished_at: Optional[datetime] = None
    odds: OddsProjection = OddsProjection()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

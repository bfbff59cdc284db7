"""Odds fan-out models: one OddsRecord per upstream event id."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Outcome(BaseModel):
    name: str
    price: float
    point: Optional[float] = None         # handicap / totals line


class Market(BaseModel):
    """One canonical market of one bookmaker (key already normalized)."""
    key: str
    last_update: Optional[datetime] = None
    outcomes: List[Outcome] = Field(default_factory=list)


class Bookmaker(BaseModel):
    key: str
    title: str = ""
    last_update: Optional[datetime] = None
    markets: List[Market] = Field(default_factory=list)


class OddsRecord(BaseModel):
    """Full odds document as stored in the ``odds`` collection.

    Unique by ``event_id``; at most one Bookmaker per key and, within a
    Bookmaker, at most one Market per canonical key.
    """
    event_id: str
    sport_key: str
    sport_title: str = ""
    commence_time: Optional[datetime] = None
    home_team: str = ""
    away_team: str = ""
    bookmakers: List[Bookmaker] = Field(default_factory=list)
    last_fetched: Optional[datetime] = None

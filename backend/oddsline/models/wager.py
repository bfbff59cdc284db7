"""Wager models: structured selections, statuses and settlement outcome."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class WagerStatus(str, Enum):
    pending = "pending"
    won = "won"
    lost = "lost"
    void = "void"
    cancelled = "cancelled"


class MarketFamily(str, Enum):
    """Closed set of settlement semantics a market key can map to."""
    h2h = "h2h"
    spreads = "spreads"
    totals = "totals"
    other = "other"


class Side(str, Enum):
    home = "home"
    away = "away"
    draw = "draw"
    over = "over"
    under = "under"


class WagerSelection(BaseModel):
    """Selection parsed once at wager creation.

    ``line`` is the signed handicap for spreads and the threshold for totals;
    it is ``None`` for winner markets.
    """
    model_config = {"use_enum_values": True}

    family: MarketFamily
    side: Side
    line: Optional[float] = None


class Wager(BaseModel):
    """Wager document as stored in the ``wagers`` collection."""
    model_config = {"use_enum_values": True}

    user_id: str
    match_id: str                         # external match/event id
    home_team: str = ""
    away_team: str = ""
    market: str                           # canonical market key (normalized by build_wager)
    market_family: MarketFamily = MarketFamily.other
    selection: str
    parsed: Optional[WagerSelection] = None
    stake: float = Field(ge=0.01)
    odds: float = Field(ge=1.01)
    potential_payout: float
    status: WagerStatus = WagerStatus.pending
    actual_payout: float = 0.0
    push: bool = False
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Evaluation(BaseModel):
    """Result of evaluating one wager against a final score."""
    model_config = {"use_enum_values": True}

    status: WagerStatus
    push: bool = False
    unparseable: bool = False
    reason: str = ""

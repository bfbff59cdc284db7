from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class TeamScore(BaseModel):
    name: str
    score: Optional[str] = None           # provider sends strings ("3")


class CompletedResult(BaseModel):
    """Scores-surface document keyed by upstream event id.

    Owned by the feed; settlement only reads it.
    """
    event_id: str
    sport_key: str = ""
    home_team: str = ""
    away_team: str = ""
    commence_time: Optional[datetime] = None
    scores: List[TeamScore] = Field(default_factory=list)
    completed: bool = False
    last_update: Optional[datetime] = None

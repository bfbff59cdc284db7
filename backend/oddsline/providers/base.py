from abc import ABC, abstractmethod
from typing import Any, Optional


class BaseOddsFeed(ABC):
    """Abstract upstream odds feed.

    Implementations never raise to the caller: failures degrade to an empty
    list (or a last-known-good snapshot) so one bad sport cannot abort a run.
    """

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @property
    def quota(self) -> dict[str, Any]:
        """Most recently reported request quota, if the feed reports one."""
        return {}

    @abstractmethod
    async def get_sports(self) -> list[dict[str, Any]]:
        """Active sports as ``{"key", "title", "group", "active"}`` dicts."""
        ...

    @abstractmethod
    async def get_odds(
        self,
        sport_key: str,
        markets: list[str],
        *,
        bookmakers: Optional[list[str]] = None,
        regions: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Fetch one bounded chunk of markets for a sport.

        Returns provider events with at least:
        - id, sport_key, sport_title, commence_time, home_team, away_team
        - bookmakers: [{key, title, last_update, markets: [{key, last_update, outcomes}]}]
        """
        ...

    @abstractmethod
    async def get_scores(self, sport_key: str, days_from: int = 3) -> list[dict[str, Any]]:
        """Live and completed score lists keyed by event ``id``."""
        ...

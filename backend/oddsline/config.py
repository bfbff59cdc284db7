"""
backend/oddsline/config.py

Purpose:
    Central settings loading for the odds pipeline (feed client, merge writes,
    lifecycle sweep, settlement, event bus and realtime transport).

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "oddsline"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"

    # Upstream odds feed (empty key disables the client at startup)
    ODDS_API_KEY: str = ""
    ODDS_API_BASE_URL: str = "https://api.the-odds-api.com/v4"
    ODDS_REGIONS: str = "us,us2,uk,eu,au"
    ODDS_SPORTS: str = ""  # comma list; empty = discover via /sports
    ODDS_EXCLUDED_SPORTS: str = "golf_the_open_championship_winner"
    ODDS_MARKETS: str = "h2h,spreads,totals"
    ODDS_LIVE_MARKETS: str = "h2h"
    ODDS_MARKETS_PER_REQUEST: int = 3
    ODDS_PRIMARY_BOOKMAKERS: str = ""  # empty = all bookmakers in region
    ODDS_FALLBACK_BOOKMAKERS: str = ""
    ODDS_CHUNK_DELAY_SECONDS: float = 2.0
    ODDS_SPORT_DELAY_SECONDS: float = 3.0
    ODDS_MAX_RETRIES: int = 2
    ODDS_RETRY_BASE_DELAY: float = 1.0
    ODDS_HTTP_TIMEOUT_SECONDS: float = 15.0
    ODDS_API_RATE_LIMIT_RPM: int = 30
    ODDS_FALLBACK_SNAPSHOT_PATH: str = ""  # last-known-good JSON snapshot
    ODDS_CACHE_TTL_SECONDS: int = 60
    ODDS_SCORES_DAYS_FROM: int = 3
    ODDS_MIRROR_FALLBACK_LIMIT: int = 250

    # Merge writes
    ODDS_WRITE_BATCH_SIZE: int = 50
    ODDS_WRITE_BATCH_PAUSE_SECONDS: float = 0.1

    # Lifecycle + settlement
    MATCH_FINISH_GRACE_HOURS: float = 3.0
    SETTLEMENT_LOOKBACK_DAYS: int = 3

    # Periodic task intervals
    SCHEDULER_ENABLED: bool = True
    ODDS_POLL_INTERVAL_MINUTES: int = 30
    LIVE_ODDS_INTERVAL_MINUTES: int = 1
    LIFECYCLE_INTERVAL_MINUTES: int = 1
    SCORES_INTERVAL_MINUTES: int = 5
    SETTLEMENT_INTERVAL_MINUTES: int = 2
    LIVE_BROADCAST_INTERVAL_MINUTES: int = 1

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_SETTLEMENT_ENABLED: bool = True
    EVENT_HANDLER_CACHE_ENABLED: bool = True

    # WebSocket realtime stream
    WS_EVENTS_ENABLED: bool = True
    WS_HEARTBEAT_SECONDS: int = 30
    WS_MAX_CONNECTIONS: int = 500

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


def split_csv(value: str) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty tokens."""
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


settings = Settings()

"""
backend/oddsline/providers/odds_api.py

Purpose:
    Rate-limited client for The Odds API v4 (sports, odds and scores). Every
    public call degrades instead of raising: exhausted retries return the
    stale cached value, the last-known-good snapshot (auth/server failures,
    when configured) or an empty list. Missing credentials disable the client
    once at construction; each call is then a logged no-op.

Dependencies:
    - httpx (via oddsline.providers.http_client)
    - oddsline.providers.throttle
    - oddsline.services.cache
    - oddsline.monitoring.pipeline_metrics
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import httpx
from pymongo.errors import PyMongoError

import oddsline.database as _db
from oddsline.config import settings, split_csv
from oddsline.monitoring.pipeline_metrics import (
    METRIC_FEED_FALLBACK_SERVED,
    METRIC_FEED_QUOTA_REMAINING,
    METRIC_FEED_QUOTA_USED,
    METRIC_FEED_REQUESTS,
)
from oddsline.providers.base import BaseOddsFeed
from oddsline.providers.http_client import ResilientClient, safe_url
from oddsline.providers.throttle import FeedThrottle
from oddsline.services.cache import TTLCache
from oddsline.utils import utcnow

logger = logging.getLogger("oddsline.odds_api")

_EXCLUDED_SPORT_FRAGMENTS = ("politics", "entertainment")
# Failure kinds that may be answered from the last-known-good snapshot.
_SNAPSHOT_KINDS = frozenset({"auth", "server", "network"})


class FeedUnavailable(Exception):
    """Internal signal: the upstream call produced no usable payload."""

    def __init__(self, kind: str, detail: str = ""):
        super().__init__(f"{kind}: {detail}" if detail else kind)
        self.kind = kind


class OddsFeedClient(BaseOddsFeed):
    """The Odds API implementation with retries, circuit breaker, throttle and SWR cache."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        regions: Optional[str] = None,
        client: Optional[ResilientClient] = None,
        throttle: Optional[FeedThrottle] = None,
        cache: Optional[TTLCache] = None,
        snapshot_path: Optional[str] = None,
        excluded_sports: Optional[list[str]] = None,
        persist_usage: bool = True,
    ):
        self._api_key = (settings.ODDS_API_KEY if api_key is None else api_key).strip()
        self._base_url = (base_url or settings.ODDS_API_BASE_URL).rstrip("/")
        self._regions = regions or settings.ODDS_REGIONS
        self._client = client or ResilientClient(
            "odds_api",
            timeout=settings.ODDS_HTTP_TIMEOUT_SECONDS,
            max_retries=settings.ODDS_MAX_RETRIES,
            base_delay=settings.ODDS_RETRY_BASE_DELAY,
        )
        self._throttle = throttle or FeedThrottle(settings.ODDS_API_RATE_LIMIT_RPM)
        self._cache = cache or TTLCache(ttl=settings.ODDS_CACHE_TTL_SECONDS)
        self._snapshot_path = settings.ODDS_FALLBACK_SNAPSHOT_PATH if snapshot_path is None else snapshot_path
        self._snapshot: Optional[list[dict[str, Any]]] = None
        self._excluded = set(
            split_csv(settings.ODDS_EXCLUDED_SPORTS) if excluded_sports is None else excluded_sports
        )
        self._persist = persist_usage
        self._quota: dict[str, Any] = {"requests_used": None, "requests_remaining": None, "updated_at": None}
        self._enabled = bool(self._api_key)
        if not self._enabled:
            logger.warning("ODDS_API_KEY is not configured; odds feed client disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def quota(self) -> dict[str, Any]:
        return dict(self._quota)

    @property
    def circuit_open(self) -> bool:
        return self._client.circuit.is_open

    @property
    def circuit_state(self) -> str:
        return self._client.circuit.state

    # ---- public surface ----

    async def get_sports(self) -> list[dict[str, Any]]:
        if not self._enabled:
            logger.warning("Odds feed disabled; get_sports skipped")
            return []
        try:
            raw = await self._cache.get_or_load("sports", lambda: self._fetch_list("/sports", {}, endpoint="sports"))
        except FeedUnavailable as exc:
            logger.error("Sports discovery unavailable (%s)", exc.kind)
            return []
        return [s for s in raw or [] if self._sport_allowed(s)]

    async def get_odds(
        self,
        sport_key: str,
        markets: list[str],
        *,
        bookmakers: Optional[list[str]] = None,
        regions: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        if not self._enabled:
            logger.warning("Odds feed disabled; get_odds(%s) skipped", sport_key)
            return []
        markets_csv = ",".join(m for m in markets if m)
        if not markets_csv:
            return []
        params: dict[str, Any] = {
            "regions": regions or self._regions,
            "markets": markets_csv,
            "oddsFormat": "decimal",
        }
        if bookmakers:
            # The API rejects regions and bookmakers together; bookmakers win.
            params.pop("regions")
            params["bookmakers"] = ",".join(bookmakers)
        cache_key = f"odds:{sport_key}:{markets_csv}:{params.get('bookmakers') or params.get('regions')}"
        try:
            events = await self._cache.get_or_load(
                cache_key,
                lambda: self._fetch_list(f"/sports/{sport_key}/odds", params, endpoint="odds"),
            )
            return events or []
        except FeedUnavailable as exc:
            if exc.kind in _SNAPSHOT_KINDS:
                snapshot = self._snapshot_events(sport_key)
                if snapshot:
                    METRIC_FEED_FALLBACK_SERVED.labels(sport_key=sport_key).inc()
                    logger.warning(
                        "Serving %d snapshot events for %s after %s failure",
                        len(snapshot), sport_key, exc.kind,
                    )
                    return snapshot
            logger.error("No odds for %s markets=%s (%s)", sport_key, markets_csv, exc.kind)
            return []

    async def get_scores(self, sport_key: str, days_from: int = 3) -> list[dict[str, Any]]:
        if not self._enabled:
            logger.warning("Odds feed disabled; get_scores(%s) skipped", sport_key)
            return []
        params = {"daysFrom": max(1, min(3, int(days_from)))}
        try:
            scores = await self._cache.get_or_load(
                f"scores:{sport_key}:{params['daysFrom']}",
                lambda: self._fetch_list(f"/sports/{sport_key}/scores", params, endpoint="scores"),
            )
            return scores or []
        except FeedUnavailable as exc:
            logger.error("No scores for %s (%s)", sport_key, exc.kind)
            return []

    async def load_usage(self) -> dict[str, Any]:
        """Return quota, seeding from the persisted copy when nothing was observed yet."""
        if self._quota["requests_remaining"] is None and self._persist and _db.db is not None:
            try:
                doc = await _db.db.meta.find_one({"_id": "odds_api_usage"})
            except PyMongoError:
                logger.debug("Failed to load persisted API usage from DB", exc_info=True)
                doc = None
            if doc:
                self._quota["requests_used"] = doc.get("requests_used")
                self._quota["requests_remaining"] = doc.get("requests_remaining")
                self._quota["updated_at"] = doc.get("updated_at")
        return self.quota

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- internals ----

    def _sport_allowed(self, sport: Any) -> bool:
        if not isinstance(sport, dict):
            return False
        key = str(sport.get("key") or "").lower()
        if not key or key in self._excluded:
            return False
        if sport.get("active") is False:
            return False
        return not any(fragment in key for fragment in _EXCLUDED_SPORT_FRAGMENTS)

    async def _fetch_list(self, path: str, params: dict[str, Any], *, endpoint: str) -> list[dict[str, Any]]:
        payload = await self._request(path, params, endpoint=endpoint)
        if not isinstance(payload, list):
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="decode").inc()
            raise FeedUnavailable("decode", f"expected list, got {type(payload).__name__}")
        return payload

    async def _request(self, path: str, params: dict[str, Any], *, endpoint: str) -> Any:
        url = f"{self._base_url}{path}"
        if not self._client.circuit.can_attempt():
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="circuit_open").inc()
            raise FeedUnavailable("server", "circuit open")
        if not await self._throttle.acquire():
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="quota").inc()
            raise FeedUnavailable("quota")

        try:
            resp = await self._client.get(url, params={"apiKey": self._api_key, **params})
        except httpx.HTTPError as exc:
            self._client.circuit.record_failure()
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="network").inc()
            logger.error("Odds feed network failure on %s: %s", safe_url(url), exc)
            raise FeedUnavailable("network", str(exc)) from exc

        await self._track_usage(resp)

        if resp.status_code >= 400:
            if resp.status_code in (401, 403):
                kind = "auth"
                logger.error(
                    "Odds feed rejected credentials on %s (HTTP %d): authentication failed or quota exhausted",
                    safe_url(url), resp.status_code,
                )
            elif resp.status_code >= 500 or resp.status_code in (408, 425, 429):
                kind = "server"
                logger.error("Odds feed unavailable on %s (HTTP %d)", safe_url(url), resp.status_code)
            else:
                kind = "client"
                logger.error("Odds feed refused request %s (HTTP %d)", safe_url(url), resp.status_code)
            if kind != "client":
                self._client.circuit.record_failure()
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome=kind).inc()
            raise FeedUnavailable(kind, f"HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="decode").inc()
            raise FeedUnavailable("decode", str(exc)) from exc

        self._client.circuit.record_success()
        METRIC_FEED_REQUESTS.labels(endpoint=endpoint, outcome="ok").inc()
        return payload

    async def _track_usage(self, resp: httpx.Response) -> None:
        """Record the most recent quota reported by the feed."""
        used = _header_int(resp, "x-requests-used")
        remaining = _header_int(resp, "x-requests-remaining")
        if used is None and remaining is None:
            return
        if used is not None:
            self._quota["requests_used"] = used
            METRIC_FEED_QUOTA_USED.set(used)
        if remaining is not None:
            self._quota["requests_remaining"] = remaining
            METRIC_FEED_QUOTA_REMAINING.set(remaining)
            self._throttle.note_quota(remaining)
        self._quota["updated_at"] = utcnow()
        await self._persist_usage()

    async def _persist_usage(self) -> None:
        """Persist quota to DB so it survives restarts."""
        if not self._persist or _db.db is None:
            return
        try:
            await _db.db.meta.update_one(
                {"_id": "odds_api_usage"},
                {"$set": dict(self._quota)},
                upsert=True,
            )
        except PyMongoError:
            logger.warning("Failed to persist API usage to DB", exc_info=True)

    def _snapshot_events(self, sport_key: str) -> list[dict[str, Any]]:
        if not self._snapshot_path:
            return []
        if self._snapshot is None:
            self._snapshot = _load_snapshot(self._snapshot_path)
        return [e for e in self._snapshot if e.get("sport_key") == sport_key]


def _header_int(resp: httpx.Response, name: str) -> Optional[int]:
    value = resp.headers.get(name)
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _load_snapshot(path: str) -> list[dict[str, Any]]:
    """Read a snapshot file: a list of events, ``{"events": [...]}`` or ``{sport_key: [...]}``.

    In the keyed form the key a list is filed under wins over the events' own
    ``sport_key``.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("Fallback snapshot %s unreadable: %s", path, exc)
        return []
    if isinstance(raw, dict):
        if isinstance(raw.get("events"), list):
            raw = raw["events"]
        else:
            raw = [
                {**event, "sport_key": key}
                for key, events in raw.items() if isinstance(events, list)
                for event in events if isinstance(event, dict)
            ]
    if not isinstance(raw, list):
        return []
    events = [e for e in raw if isinstance(e, dict)]
    logger.info("Loaded %d fallback snapshot events from %s", len(events), path)
    return events


odds_feed = OddsFeedClient()

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from eventnexus.domain.errors import STATUS_RULES, classify_error, classify_message
from eventnexus.domain.models import EventFilters, HealthStatus, NormalizedEvent, RateLimitStatus

from .reliability import Clock, RateLimitTracker, RetryPolicy, Sleep

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def as_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc).replace(microsecond=0)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class RateLimitConfig:
    limit: int
    window: float


@dataclass
class PluginConfig:
    enabled: bool = True
    api_key: Optional[str] = None
    oauth_token: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    rate_limit: Optional[RateLimitConfig] = None


class EventSourcePlugin(ABC):
    """Contract shared by every event source.

    Subclasses implement ``_probe`` and ``_fetch``; this class owns the
    reliability rules: rate-limit waits, request accounting, retries with
    exponential backoff and error classification.
    """

    name: str = ""
    version: str = "1.0.0"
    source: str = ""
    requires_credentials: bool = False
    # (limit, window seconds)
    default_rate_limit: Tuple[int, float] = (60, 3600.0)
    # (limit, remaining, reset) header names, when the platform sends them
    rate_limit_headers: Optional[Tuple[str, str, str]] = None

    def __init__(
        self,
        config: Optional[PluginConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _utcnow,
    ) -> None:
        self.config = config or self.default_config()
        if self.config.rate_limit is not None:
            limit, window = self.config.rate_limit.limit, self.config.rate_limit.window
        else:
            limit, window = self.default_rate_limit
        self.rate_limiter = RateLimitTracker(limit, window, clock=clock)
        self.retry_policy = RetryPolicy(self.config.max_retries, self.config.retry_delay)
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def default_config(cls) -> PluginConfig:
        return PluginConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def credential(self) -> Optional[str]:
        return self.config.oauth_token or self.config.api_key

    def validate_config(self) -> bool:
        if not self.config.enabled:
            return False
        if self.requires_credentials and not self.credential:
            return False
        return True

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.status

    async def health_check(self) -> HealthStatus:
        checked_at = self._clock()
        started = time.perf_counter()
        if not self.validate_config():
            return HealthStatus(
                is_healthy=False,
                last_check_at=checked_at,
                response_time_ms=0.0,
                last_error=f"CONFIG_INVALID: configuration is invalid for {self.source}",
            )
        try:
            await self._probe()
        except Exception as exc:
            error = classify_error(exc, source=self.source)
            logger.warning("Health check failed for %s: %s", self.name, error.message)
            return HealthStatus(
                is_healthy=False,
                last_check_at=checked_at,
                response_time_ms=(time.perf_counter() - started) * 1000,
                last_error=f"{error.code}: {error.message}",
            )
        return HealthStatus(
            is_healthy=True,
            last_check_at=checked_at,
            response_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def fetch_events(self, filters: Optional[EventFilters] = None) -> List[NormalizedEvent]:
        filters = filters or EventFilters()
        await self.rate_limiter.wait(self._sleep)
        return await self.retry_policy.run(
            lambda: self._fetch(filters),
            source=self.source,
            sleep=self._sleep,
        )

    @abstractmethod
    async def _probe(self) -> None:
        """Cheapest request proving the platform is reachable with this config."""

    @abstractmethod
    async def _fetch(self, filters: EventFilters) -> List[NormalizedEvent]:
        """One full fetch attempt, pages requested sequentially."""

    def _default_headers(self) -> Dict[str, str]:
        return {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.timeout,
            transport=self._transport,
            headers=self._default_headers(),
            follow_redirects=True,
        )

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.rate_limiter.wait(self._sleep)
        self.rate_limiter.consume()
        response = await client.request(method, url, **kwargs)
        if self.rate_limit_headers:
            limit_header, remaining_header, reset_header = self.rate_limit_headers
            self.rate_limiter.update_from_headers(
                response.headers,
                limit_header=limit_header,
                remaining_header=remaining_header,
                reset_header=reset_header,
            )
        return response

    def _check_response(self, response: httpx.Response, detail: Optional[str] = None) -> None:
        if response.is_success:
            return
        message = f"{response.status_code} {response.reason_phrase}: {detail or response.url}"
        error_cls = STATUS_RULES.get(response.status_code) or classify_message(message)
        raise error_cls(message, source=self.source)

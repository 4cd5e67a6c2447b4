from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Mapping, Optional, TypeVar

from eventnexus.domain.errors import PluginError, classify_error
from eventnexus.domain.models import RateLimitStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitTracker:
    """Per-plugin request budget.

    The counter is decremented for every outbound request, successful or not.
    Once the budget is exhausted ``wait`` suspends the caller until ``reset_at``
    and then restores the full limit. Live response headers override the local
    estimate when the platform exposes them.
    """

    def __init__(self, limit: int, window: float, *, clock: Clock = _utcnow) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._clock = clock
        self._status = RateLimitStatus(limit=limit, remaining=limit, window=window)

    @property
    def status(self) -> RateLimitStatus:
        return self._status.copy()

    def consume(self) -> None:
        self._refresh_if_elapsed()
        status = self._status
        if status.reset_at is None:
            status.reset_at = self._clock() + timedelta(seconds=status.window)
        if status.remaining > 0:
            status.remaining -= 1

    async def wait(self, sleep: Sleep = asyncio.sleep) -> float:
        """Block while the budget is exhausted. Returns the seconds waited."""
        self._refresh_if_elapsed()
        status = self._status
        if status.remaining > 0 or status.reset_at is None:
            return 0.0
        delay = (status.reset_at - self._clock()).total_seconds()
        if delay > 0:
            logger.info("Rate limit exhausted, waiting %.1fs until %s", delay, status.reset_at.isoformat())
            await sleep(delay)
        else:
            delay = 0.0
        self._reset()
        return delay

    def update_from_headers(
        self,
        headers: Mapping[str, str],
        *,
        limit_header: str,
        remaining_header: str,
        reset_header: str,
    ) -> None:
        limit = _parse_int(headers.get(limit_header))
        remaining = _parse_int(headers.get(remaining_header))
        reset = _parse_int(headers.get(reset_header))
        if limit is not None:
            self._status.limit = limit
        if remaining is not None:
            self._status.remaining = remaining
        if reset is not None:
            self._status.reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)

    def _refresh_if_elapsed(self) -> None:
        reset_at = self._status.reset_at
        if reset_at is not None and reset_at <= self._clock():
            self._reset()

    def _reset(self) -> None:
        self._status.remaining = self._status.limit
        self._status.reset_at = None


class RetryPolicy:
    """Exponential backoff: ``base_delay * 2 ** attempt`` with attempt starting at 0."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        source: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                error: PluginError = classify_error(exc, source=source)
                if not error.retryable or attempt >= self.max_retries:
                    if error is exc:
                        raise
                    raise error from exc
                delay = self.delay_for(attempt)
                logger.warning(
                    "[%s] attempt %d failed (%s: %s), retrying in %.1fs",
                    source or "plugin",
                    attempt + 1,
                    error.code,
                    error.message,
                    delay,
                )
                await sleep(delay)
                attempt += 1


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

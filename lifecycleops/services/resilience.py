from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable

from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import OperationCancelled


@dataclass(frozen=True)
class RetryPolicy:
    # Centralize directory retry behavior for deterministic policy changes.
    timeout_ms: int
    max_attempts: int
    backoff_base_s: float
    backoff_cap_s: float
    jitter: float = 0.0
    retry_after_cap_s: float = 120.0

    def backoff_delay(self, retry_number: int, *, rng: Callable[[], float] = random.random) -> float:
        # retry_number starts at 1: base, 2*base, 4*base ... capped.
        exponent = max(retry_number - 1, 0)
        delay = min(self.backoff_base_s * (2**exponent), self.backoff_cap_s)
        if self.jitter > 0:
            spread = delay * self.jitter
            delay = delay - spread + (2 * spread * rng())
        return max(delay, 0.0)

    def delay_for(self, retry_number: int, retry_after_s: float | None) -> float:
        # A server hint always wins over computed backoff, within the hint ceiling.
        if retry_after_s is not None:
            return min(max(retry_after_s, 0.0), self.retry_after_cap_s)
        return self.backoff_delay(retry_number)


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=max(settings.directory_max_attempts, 1),
        backoff_base_s=settings.directory_backoff_base_s,
        backoff_cap_s=settings.directory_backoff_cap_s,
        jitter=settings.directory_backoff_jitter,
        retry_after_cap_s=settings.directory_retry_after_cap_s,
    )


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        return max(float(stripped), 0.0)
    except ValueError:
        pass
    try:
        target = parsedate_to_datetime(stripped)
    except (TypeError, ValueError):
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max((target - reference).total_seconds(), 0.0)


class CancellationToken:
    """Caller-owned cancel signal with an optional monotonic deadline."""

    def __init__(
        self,
        *,
        deadline: float | None = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = asyncio.Event()
        self._deadline = deadline
        self._time = time_source
        self._reason: str | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def reason(self) -> str:
        if self._reason is not None:
            return self._reason
        return "deadline exceeded"

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._time() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(self._deadline - self._time(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason)

    async def wait(self, timeout: float) -> bool:
        # True when cancellation fired before the timeout elapsed.
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


Sleeper = Callable[[float, "CancellationToken | None"], Awaitable[None]]


async def cancellable_sleep(delay_s: float, cancel: CancellationToken | None = None) -> None:
    # Backoff sleeps end early on cancellation instead of waiting out the delay.
    if cancel is None:
        await asyncio.sleep(delay_s)
        return
    cancel.raise_if_cancelled()
    remaining = cancel.remaining()
    if remaining is not None and remaining < delay_s:
        raise OperationCancelled("deadline would expire before the next retry")
    if await cancel.wait(delay_s):
        raise OperationCancelled(cancel.reason)

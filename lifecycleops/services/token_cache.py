from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True)
class CachedToken:
    tenant_id: str
    bearer_token: str = field(repr=False)
    expires_at: datetime

    def is_usable(self, now: datetime, safety_margin: timedelta) -> bool:
        return now < self.expires_at - safety_margin


class TokenCache:
    """Per-tenant bearer token cache shared by every run of a process.

    Passed explicitly to the broker and the registry. Map mutations are guarded
    by a mutex; each tenant also gets an asyncio lock so concurrent callers wait
    for one exchange instead of issuing their own. A generation counter lets an
    in-flight exchange detect that the tenant's credentials were rotated while it
    was running, in which case its result is not cached.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CachedToken] = {}
        self._generations: dict[str, int] = defaultdict(int)
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def get(self, tenant_id: str) -> CachedToken | None:
        with self._guard:
            return self._entries.get(tenant_id)

    def generation(self, tenant_id: str) -> int:
        with self._guard:
            return self._generations[tenant_id]

    def store(self, token: CachedToken, *, generation: int) -> bool:
        with self._guard:
            if self._generations[token.tenant_id] != generation:
                return False
            self._entries[token.tenant_id] = token
            return True

    def invalidate(self, tenant_id: str) -> None:
        with self._guard:
            self._entries.pop(tenant_id, None)
            self._generations[tenant_id] += 1

    def lock_for(self, tenant_id: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[tenant_id] = lock
            return lock

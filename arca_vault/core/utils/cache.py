"""Explicit TTL cache values.

The engine never caches; callers that want to reuse a price hold a ``Cache``
value and decide when it is fresh.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Cache[T]:
    value: T
    expires_at: float

    @classmethod
    def wrap(cls, value: T, ttl_s: float, *, now: float | None = None) -> Cache[T]:
        if ttl_s < 0:
            raise ValueError("ttl_s must be non-negative")
        now = time.time() if now is None else now
        return cls(value=value, expires_at=now + ttl_s)

    def is_fresh(self, *, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now < self.expires_at

    def get(self, *, now: float | None = None) -> T | None:
        return self.value if self.is_fresh(now=now) else None

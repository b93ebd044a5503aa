"""Availability cache with an explicit invalidation contract.

Keys:
    reservations:availability:{category}

Writers invalidate the categories they touched; the cached value is the
category's ``available`` count and lives at most ``ttl`` seconds.
"""

from django.core.cache import BaseCache, cache as default_cache


class AvailabilityCache:
    """Per-category available counts over Django's cache framework."""

    KEY_PREFIX = "reservations:availability:"

    def __init__(self, backend: BaseCache | None = None, ttl: int = 30) -> None:
        self._backend = backend or default_cache
        self._ttl = ttl

    def key(self, category: str) -> str:
        return f"{self.KEY_PREFIX}{category}"

    def get(self, category: str) -> int | None:
        if self._ttl <= 0:
            return None
        return self._backend.get(self.key(category))

    def set(self, category: str, available: int) -> None:
        if self._ttl > 0:
            self._backend.set(self.key(category), available, self._ttl)

    def invalidate(self, categories) -> None:
        self._backend.delete_many([self.key(c) for c in set(categories)])

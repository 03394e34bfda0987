from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger("mia.cache")

T = TypeVar("T")


class CachedStore(Generic[T]):
    """TTL cache around a loader callable with lazy refresh and explicit invalidation."""

    def __init__(
        self,
        loader: Callable[[], T],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Purpose: Configure the cache with a loader and a time-to-live.
        Inputs/Outputs: Inputs are a zero-arg loader, TTL in seconds and an optional
            clock; no return value.
        Side Effects / State: Holds (value, timestamp) guarded by a lock.
        Dependencies: None beyond threading/time.
        Failure Modes: None at init; loader errors surface from get().
        If Removed: Pattern lookups hit storage on every chat message.
        Testing Notes: Inject a fake clock to advance past the TTL.
        """
        # Keep the loader and an empty slot until the first get().
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self) -> T:
        """Purpose: Return the cached value, reloading when empty or expired.
        Inputs/Outputs: No inputs; returns the loader's value.
        Side Effects / State: Replaces (value, timestamp) after a successful load.
        Dependencies: Calls the configured loader outside the lock.
        Failure Modes: Loader exceptions propagate and leave the cache unchanged.
        If Removed: Callers cannot share one refresh policy.
        Testing Notes: Two calls within TTL trigger one load.
        """
        # Serve a fresh value without touching the loader.
        with self._lock:
            if self._loaded_at is not None and (self._clock() - self._loaded_at) < self._ttl:
                return self._value  # type: ignore[return-value]

        value = self._loader()
        with self._lock:
            self._value = value
            self._loaded_at = self._clock()
        logger.debug("cache refreshed ttl=%s", self._ttl)
        return value

    def invalidate(self) -> None:
        """Drop the cached value so the next get() reloads immediately."""
        with self._lock:
            self._value = None
            self._loaded_at = None
        logger.info("cache invalidated")

    def is_fresh(self) -> bool:
        with self._lock:
            return self._loaded_at is not None and (self._clock() - self._loaded_at) < self._ttl

"""
TTL Cache Tests
===============

Purpose
-------
Check the refresh policy of CachedStore with an injected clock.

Scope
-----
- Loads once per TTL window, reloads after expiry or invalidate().
- Loader failures propagate without poisoning the cache.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Third-party libraries
import pytest                      # Exception assertions

# Local modules
from mia_assistant.cache import CachedStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    """Loader that returns an incrementing value and can be told to fail."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False

    def __call__(self) -> int:
        if self.fail:
            raise RuntimeError("store unavailable")
        self.calls += 1
        return self.calls


# ----------------------------
# Tests
# ----------------------------

def test_value_is_reused_within_ttl():
    """Two reads inside the TTL window hit the loader once."""
    clock, loader = FakeClock(), CountingLoader()
    cache = CachedStore(loader, ttl_seconds=300, clock=clock)

    assert cache.get() == 1
    clock.now += 299
    assert cache.get() == 1
    assert loader.calls == 1
    assert cache.is_fresh()


def test_value_reloads_after_expiry():
    """Reaching the TTL triggers a reload on the next read."""
    clock, loader = FakeClock(), CountingLoader()
    cache = CachedStore(loader, ttl_seconds=300, clock=clock)

    cache.get()
    clock.now += 300
    assert not cache.is_fresh()
    assert cache.get() == 2


def test_invalidate_forces_reload():
    """invalidate() drops the value regardless of TTL."""
    clock, loader = FakeClock(), CountingLoader()
    cache = CachedStore(loader, ttl_seconds=300, clock=clock)

    cache.get()
    cache.invalidate()
    assert not cache.is_fresh()
    assert cache.get() == 2


def test_loader_error_propagates_and_next_get_retries():
    """A failing load raises; once the loader recovers the cache fills normally."""
    clock, loader = FakeClock(), CountingLoader()
    cache = CachedStore(loader, ttl_seconds=300, clock=clock)

    loader.fail = True
    with pytest.raises(RuntimeError):
        cache.get()
    loader.fail = False
    assert cache.get() == 1
    assert cache.ttl_seconds == 300

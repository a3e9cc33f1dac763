"""
Tests for the TTL cache and cooldown gate.
"""
from datetime import timedelta

import pytest

from marketplace.lib.cooldown import CooldownGate, TTLCache


@pytest.mark.unit
def test_ttl_cache_suppresses_within_window(clock):
    cache = TTLCache(timedelta(minutes=10), clock=clock)

    assert cache.add("k") is True
    assert cache.add("k") is False
    assert cache.contains("k")

    clock.advance(minutes=9, seconds=59)
    assert cache.add("k") is False


@pytest.mark.unit
def test_ttl_cache_expires(clock):
    cache = TTLCache(timedelta(minutes=10), clock=clock)
    cache.add(("viewer", "service"))

    clock.advance(minutes=10)

    assert not cache.contains(("viewer", "service"))
    assert cache.add(("viewer", "service")) is True


@pytest.mark.unit
def test_ttl_cache_keys_are_independent(clock):
    cache = TTLCache(timedelta(minutes=10), clock=clock)
    assert cache.add("a")
    assert cache.add("b")
    cache.discard("a")
    assert cache.add("a")
    cache.clear()
    assert cache.add("b")


@pytest.mark.unit
def test_cooldown_gate_allows_once_per_interval(clock):
    gate = CooldownGate(timedelta(hours=1), clock=clock)

    assert gate.try_acquire() is True
    assert gate.last_run == clock.now
    assert gate.try_acquire() is False

    clock.advance(minutes=59)
    assert gate.try_acquire() is False

    clock.advance(minutes=1)
    assert gate.try_acquire() is True


@pytest.mark.unit
def test_cooldown_gate_reset(clock):
    gate = CooldownGate(timedelta(hours=1), clock=clock)
    gate.try_acquire()
    gate.reset()
    assert gate.last_run is None
    assert gate.try_acquire() is True

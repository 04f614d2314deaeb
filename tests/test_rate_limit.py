from __future__ import annotations

import threading

import pytest

from api.errors import RateLimitExceeded
from api.rate_limit import MemoryWindowStore, RateLimiter
from db.rate_limit_db import SqlWindowStore


def _limiters(session_factory, clock):
    return [
        RateLimiter(MemoryWindowStore(), clock=clock),
        RateLimiter(SqlWindowStore(session_factory), clock=clock),
    ]


@pytest.fixture(params=["memory", "sql"])
def any_limiter(request, session_factory, clock):
    store = MemoryWindowStore() if request.param == "memory" else SqlWindowStore(session_factory)
    return RateLimiter(store, clock=clock)


def test_excess_calls_denied_inside_window(any_limiter):
    results = [any_limiter.allow("s1", "agent-pull", 3, 60) for _ in range(5)]
    assert results == [True, True, True, False, False]


def test_allowed_again_strictly_after_window(any_limiter, clock):
    assert any_limiter.allow("s1", "heartbeat", 1, 15)
    clock.advance(15)
    # at the reset instant the window is still open
    assert not any_limiter.allow("s1", "heartbeat", 1, 15)
    clock.advance(0.001)
    assert any_limiter.allow("s1", "heartbeat", 1, 15)
    assert not any_limiter.allow("s1", "heartbeat", 1, 15)


def test_keys_are_independent(any_limiter):
    assert any_limiter.allow("s1", "heartbeat", 1, 15)
    assert any_limiter.allow("s2", "heartbeat", 1, 15)
    assert any_limiter.allow("s1", "config-write", 1, 15)
    assert not any_limiter.allow("s1", "heartbeat", 1, 15)


def test_denied_call_does_not_extend_window(any_limiter, clock):
    assert any_limiter.allow("s1", "op", 1, 10)
    clock.advance(9)
    assert not any_limiter.allow("s1", "op", 1, 10)
    clock.advance(1.5)
    assert any_limiter.allow("s1", "op", 1, 10)


def test_concurrent_callers_never_exceed_budget(clock):
    limiter = RateLimiter(MemoryWindowStore(), clock=clock)
    admitted = []
    lock = threading.Lock()

    def worker():
        ok = limiter.allow("s1", "agent-pull", 10, 60)
        with lock:
            admitted.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert admitted.count(True) == 10


def test_enforce_raises_with_named_budget(limiter):
    limiter.enforce("s1", "heartbeat")
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.enforce("s1", "heartbeat")
    assert exc.value.status_code == 429
    assert exc.value.to_dict()["operation"] == "heartbeat"


def test_reset_clears_windows(session_factory, clock):
    for limiter in _limiters(session_factory, clock):
        assert limiter.allow("s1", "op", 1, 60)
        assert not limiter.allow("s1", "op", 1, 60)
        limiter.store.reset()
        assert limiter.allow("s1", "op", 1, 60)


def test_max_calls_must_be_positive(limiter):
    with pytest.raises(ValueError):
        limiter.allow("s1", "op", 0, 60)

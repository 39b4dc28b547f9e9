import time

import pytest

from errors import RateLimitError
from rate_limit import MemoryCounterStore, RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _limiter(max_hits=3, window=60):
    clock = FakeClock()
    store = MemoryCounterStore(clock=clock)
    return RateLimiter(store, max_hits, window, prefix="t", clock=clock), store, clock


def test_allows_up_to_limit_then_refuses():
    limiter, _, _ = _limiter()

    results = [limiter.hit("a") for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after > 0


def test_window_resets_after_expiry():
    limiter, _, clock = _limiter(max_hits=1, window=60)

    assert limiter.hit("a").allowed
    assert not limiter.hit("a").allowed

    clock.now += 60
    assert limiter.hit("a").allowed


def test_refused_hits_do_not_extend_the_window():
    limiter, store, clock = _limiter(max_hits=2, window=60)
    limiter.hit("a")
    limiter.hit("a")

    clock.now += 30
    for _ in range(5):
        assert not limiter.hit("a").allowed

    clock.now += 30
    assert limiter.hit("a").allowed


def test_keys_are_independent():
    limiter, _, _ = _limiter(max_hits=1)
    assert limiter.hit("a").allowed
    assert limiter.hit("b").allowed
    assert not limiter.hit("a").allowed


def test_check_raises_with_retry_after():
    limiter, _, _ = _limiter(max_hits=1, window=60)
    limiter.check("a")

    with pytest.raises(RateLimitError) as exc:
        limiter.check("a")
    assert exc.value.status_code == 429
    assert 1 <= exc.value.retry_after <= 61


def test_zero_limit_disables_limiter():
    limiter, store, _ = _limiter(max_hits=0)
    for _ in range(20):
        assert limiter.check("a").allowed
    assert len(store) == 0


def test_reset_and_prune():
    limiter, store, clock = _limiter(max_hits=1, window=10)
    limiter.hit("a")
    limiter.hit("b")

    limiter.reset("a")
    assert limiter.hit("a").allowed

    clock.now += 11
    assert store.prune() == 2
    assert len(store) == 0


def test_expired_windows_are_evicted_without_explicit_prune():
    clock = FakeClock()
    store = MemoryCounterStore(clock=clock, prune_interval=60)
    limiter = RateLimiter(store, 3, 10, prefix="t", clock=clock)

    for n in range(50):
        limiter.hit(f"user-{n}")
    assert len(store) == 50

    clock.now += 3600
    limiter.hit("late")
    assert len(store) == 1


def test_app_counter_store_stays_bounded(app_module, client, monkeypatch):
    clock = FakeClock(now=time.time())
    store = app_module.counter_store
    monkeypatch.setattr(store, "_clock", clock)
    monkeypatch.setattr(store, "_last_prune", clock.now)
    monkeypatch.setattr(app_module.otp_limiter, "_clock", clock)

    for n in range(50):
        resp = client.post("/api/auth/send-otp", json={"phone": f"+9190000{n:05d}"})
        assert resp.status_code == 200
    assert len(store) == 50

    clock.now += 3600
    assert client.post("/api/auth/send-otp", json={"phone": "+919000099999"}).status_code == 200
    assert len(store) == 1

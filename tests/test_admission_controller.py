"""Tests for the admission controller decision logic."""

import threading

import pytest

from app.adapters.rate_limit.in_memory import ShardedInMemoryWindowStore
from app.core.admission import AdmissionController
from app.core.config import RateLimitSettings
from app.core.rate_policy import RatePolicy, RatePolicyResolver, build_policy_resolver


def _controller(resolver: RatePolicyResolver | None = None, clock=None) -> AdmissionController:
    kwargs = {"clock": clock} if clock is not None else {}
    return AdmissionController(
        store=ShardedInMemoryWindowStore(shard_count=4),
        resolver=resolver or build_policy_resolver(RateLimitSettings()),
        **kwargs,
    )


def _single_policy(max_requests: int, window_ms: int) -> RatePolicyResolver:
    return RatePolicyResolver(rules=[], default=RatePolicy("default", max_requests, window_ms))


def test_sensitive_route_allows_ten_then_denies() -> None:
    controller = _controller()

    decisions = [controller.evaluate("1.2.3.4", "/api/admin/login", 0) for _ in range(10)]
    assert all(d.allowed for d in decisions)
    assert [d.remaining for d in decisions] == list(range(9, -1, -1))

    denied = controller.evaluate("1.2.3.4", "/api/admin/login", 500)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.retry_after_seconds == 60
    assert denied.reset_at_ms == 60_000
    assert denied.policy == "sensitive"


def test_default_route_allows_hundred_then_denies() -> None:
    controller = _controller()

    for t in range(100):
        assert controller.evaluate("9.9.9.9", "/", t).allowed is True

    denied = controller.evaluate("9.9.9.9", "/", 100)
    assert denied.allowed is False
    assert denied.retry_after_seconds is not None and denied.retry_after_seconds > 0


def test_window_rollover() -> None:
    controller = _controller(_single_policy(5, 1_000))

    for _ in range(5):
        assert controller.evaluate("5.5.5.5", "/", 0).allowed is True

    assert controller.evaluate("5.5.5.5", "/", 999).allowed is False

    fresh = controller.evaluate("5.5.5.5", "/", 1_001)
    assert fresh.allowed is True
    assert fresh.remaining == 4
    assert fresh.reset_at_ms == 2_001


def test_request_at_exact_reset_stays_in_current_window() -> None:
    controller = _controller(_single_policy(1, 1_000))

    assert controller.evaluate("k", "/", 0).allowed is True
    at_reset = controller.evaluate("k", "/", 1_000)

    assert at_reset.allowed is False
    assert at_reset.retry_after_seconds == 1


def test_first_request_is_always_allowed() -> None:
    decision = _controller(_single_policy(1, 1_000)).evaluate("new", "/", 42)

    assert decision.allowed is True
    assert decision.remaining == 0
    assert decision.retry_after_seconds is None


def test_keys_are_isolated() -> None:
    controller = _controller(_single_policy(2, 60_000))

    for _ in range(5):
        controller.evaluate("A", "/", 0)

    b = controller.evaluate("B", "/", 0)
    assert b.allowed is True
    assert b.remaining == 1


def test_route_classes_count_separately_for_one_client() -> None:
    controller = _controller()

    for _ in range(6):
        controller.evaluate("7.7.7.7", "/api/auth/login", 0)

    assert controller.evaluate("7.7.7.7", "/api/auth/login", 0).allowed is False
    assert controller.evaluate("7.7.7.7", "/", 0).allowed is True


@pytest.mark.parametrize("key", ["", "unknown"])
def test_empty_key_shares_unknown_bucket(key: str) -> None:
    controller = _controller(_single_policy(1, 60_000))

    controller.evaluate("", "/", 0)

    assert controller.evaluate(key, "/", 0).allowed is False


def test_uses_injected_clock_when_now_omitted(clock) -> None:
    controller = _controller(_single_policy(1, 1_000), clock=clock)

    first = controller.evaluate("k", "/")
    assert first.reset_at_ms == clock.now_ms + 1_000

    clock.advance(1_001)
    assert controller.evaluate("k", "/").allowed is True


def test_purge_then_evaluate_behaves_like_first_request() -> None:
    controller = _controller(_single_policy(3, 1_000))
    for _ in range(4):
        controller.evaluate("k", "/", 0)

    controller.store.purge_expired(10_000_000)
    assert len(controller.store) == 0

    decision = controller.evaluate("k", "/", 10_000_000)
    assert decision.allowed is True
    assert decision.remaining == 2


def test_concurrent_requests_never_exceed_ceiling() -> None:
    controller = _controller(_single_policy(10, 60_000))
    workers = 64
    barrier = threading.Barrier(workers)
    results: list[bool] = []
    results_lock = threading.Lock()

    def _hit() -> None:
        barrier.wait()
        allowed = controller.evaluate("203.0.113.9", "/", 1_000).allowed
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=_hit) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 10
    assert results.count(False) == workers - 10

"""Tests for rate limiting of OpenStack API calls."""

import threading
import time

import pytest
from prometheus_client import REGISTRY

from openstack_cloud import ratelimit
from openstack_cloud.ratelimit import RateLimiter, get_rate_limiter


def waited_seconds(operation: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "openstack_cloud_rate_limit_wait_seconds_sum", {"operation": operation}
        )
        or 0.0
    )


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_unthrottled_call(self):
        limiter = RateLimiter(max_concurrent=4, requests_per_second=0)

        with limiter.acquire("list_networks"):
            pass

    @pytest.mark.parametrize("max_concurrent", [0, -1])
    def test_rejects_invalid_concurrency(self, max_concurrent):
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=max_concurrent)

    def test_parallel_image_initializations_bounded(self):
        limiter = RateLimiter(max_concurrent=2, requests_per_second=0)
        in_flight = []
        peak = 0
        lock = threading.Lock()

        def list_flavors():
            nonlocal peak
            with limiter.acquire("list_flavors"):
                with lock:
                    in_flight.append(1)
                    peak = max(peak, len(in_flight))
                time.sleep(0.05)
                with lock:
                    in_flight.pop()

        threads = [threading.Thread(target=list_flavors) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 2

    def test_calls_spaced_by_rate(self):
        # 20 calls per second: at least 50ms between slots
        limiter = RateLimiter(max_concurrent=10, requests_per_second=20)

        started = time.monotonic()
        for _ in range(4):
            with limiter.acquire("get_server"):
                pass

        assert time.monotonic() - started >= 0.14

    def test_wait_recorded_per_operation(self):
        limiter = RateLimiter(max_concurrent=10, requests_per_second=10)
        before = waited_seconds("create_server")

        for _ in range(2):
            with limiter.acquire("create_server"):
                pass

        assert waited_seconds("create_server") > before

    def test_slot_released_when_call_fails(self):
        limiter = RateLimiter(max_concurrent=1, requests_per_second=0)

        with pytest.raises(RuntimeError):
            with limiter.acquire("delete_server"):
                raise RuntimeError("nova down")

        with limiter.acquire("delete_server"):
            pass

    def test_repr(self):
        limiter = RateLimiter(max_concurrent=5, requests_per_second=50)

        assert repr(limiter) == "RateLimiter(max_concurrent=5, requests_per_second=50)"


class TestGetRateLimiter:
    """Tests for the process-wide limiter."""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setattr(ratelimit, "_rate_limiter", None)
        monkeypatch.setenv("OPENSTACK_MAX_CONCURRENT_CALLS", "3")
        monkeypatch.setenv("OPENSTACK_REQUESTS_PER_SECOND", "7.5")

        limiter = get_rate_limiter()

        assert limiter.max_concurrent == 3
        assert limiter.requests_per_second == 7.5
        assert get_rate_limiter() is limiter

    def test_defaults(self, monkeypatch):
        monkeypatch.setattr(ratelimit, "_rate_limiter", None)
        monkeypatch.delenv("OPENSTACK_MAX_CONCURRENT_CALLS", raising=False)
        monkeypatch.delenv("OPENSTACK_REQUESTS_PER_SECOND", raising=False)

        limiter = get_rate_limiter()

        assert limiter.max_concurrent == 10
        assert limiter.requests_per_second == 20.0

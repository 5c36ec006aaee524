"""
Tests for the shared client rate limiter
"""

# Standard
import time

# Third Party
import pytest

# Local
from contour_operator.cluster import RateLimitedClient, RateLimiter
from contour_operator.exceptions import ConfigError, ConflictError, ThrottledError
from contour_operator.metrics import API_REQUESTS
from contour_operator.test_helpers.helpers import (
    MockClusterClient,
    configure_logging,
    owned_object,
)

configure_logging()


def sample_value(verb, outcome) -> float:
    return API_REQUESTS.labels(verb=verb, outcome=outcome)._value.get()


def test_burst_then_wait():
    """Make sure the burst is available immediately and then tokens run out"""
    limiter = RateLimiter(qps=1, burst=3)
    assert [limiter.try_acquire() for _ in range(3)] == [0.0, 0.0, 0.0]
    assert limiter.try_acquire() > 0


@pytest.mark.timeout(5)
def test_acquire_waits_for_refill():
    """Make sure acquire blocks until a token refills"""
    limiter = RateLimiter(qps=20, burst=1)
    assert limiter.acquire()
    start = time.monotonic()
    assert limiter.acquire(timeout=1)
    assert time.monotonic() - start > 0.01


def test_acquire_timeout():
    """Make sure acquire gives up after the timeout"""
    limiter = RateLimiter(qps=0.1, burst=1)
    assert limiter.acquire(timeout=0)
    assert not limiter.acquire(timeout=0.05)


@pytest.mark.parametrize(["qps", "burst"], [(0, 1), (-1, 1), (1, 0)])
def test_invalid_limiter(qps, burst):
    """Make sure nonsense limits are rejected as invalid config"""
    with pytest.raises(ConfigError):
        RateLimiter(qps=qps, burst=burst)


def test_client_throttles():
    """Make sure calls beyond the limit raise ThrottledError"""
    client = RateLimitedClient(
        MockClusterClient(), limiter=RateLimiter(qps=0.1, burst=2), wait_timeout=0
    )
    before = sample_value("get", "Throttled")
    client.get("v1", "ConfigMap", "a", "ns")
    client.get("v1", "ConfigMap", "a", "ns")
    with pytest.raises(ThrottledError):
        client.get("v1", "ConfigMap", "a", "ns")
    assert sample_value("get", "Throttled") == before + 1


def test_client_delegates_and_counts():
    """Make sure calls pass through and outcomes are counted"""
    wrapped = MockClusterClient()
    client = RateLimitedClient(wrapped, limiter=RateLimiter(qps=100, burst=100))
    before_success = sample_value("create", "Success")
    before_conflict = sample_value("update", "Conflict")

    created = client.create(owned_object("ConfigMap", "a", "ns"))
    assert wrapped.mutations_of("create")[0].name == "a"

    wrapped.fail_next("update", ConflictError("stale"))
    with pytest.raises(ConflictError):
        client.update(created)

    assert sample_value("create", "Success") == before_success + 1
    assert sample_value("update", "Conflict") == before_conflict + 1

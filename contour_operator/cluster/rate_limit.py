"""
Global client-side rate limiting shared by every outbound cluster API call
"""

# Standard
from typing import Optional
import threading
import time

# First Party
import alog

# Local
from .. import config
from ..exceptions import OperatorError, ThrottledError, assert_config
from ..metrics import API_REQUESTS
from ..utils import to_seconds
from .base import ClusterClientBase

log = alog.use_channel("RATE")


class RateLimiter:
    """Token bucket allowing `qps` requests per second on average with bursts
    of up to `burst` requests
    """

    def __init__(self, qps: float, burst: int):
        assert_config(qps > 0, f"Invalid rate limit qps: {qps}")
        assert_config(burst >= 1, f"Invalid rate limit burst: {burst}")
        self.qps = float(qps)
        self.burst = burst
        self._tokens = float(burst)
        self._last_refill = time.monotonic()
        self._lock = threading.Lock()

    def try_acquire(self) -> float:
        """Take a token if one is available

        Returns:
            wait_time:  float
                0 if a token was taken, otherwise the number of seconds until
                the next token is available
        """
        with self._lock:
            now = time.monotonic()
            self._tokens = min(
                float(self.burst), self._tokens + (now - self._last_refill) * self.qps
            )
            self._last_refill = now
            if self._tokens >= 1:
                self._tokens -= 1
                return 0.0
            return (1 - self._tokens) / self.qps

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Block until a token is available

        Args:
            timeout:  Optional[float]
                Maximum seconds to wait. None waits forever.

        Returns:
            acquired:  bool
                True if a token was taken before the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait_time = self.try_acquire()
            if not wait_time:
                return True
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait_time = min(wait_time, remaining)
            log.debug4("Rate limited, waiting %.3fs", wait_time)
            time.sleep(wait_time)


class RateLimitedClient(ClusterClientBase):
    """Wraps another cluster client so that every call first takes a token from
    the shared RateLimiter. Calls that cannot get a token within the wait
    timeout fail with ThrottledError.
    """

    def __init__(
        self,
        wrapped: ClusterClientBase,
        limiter: Optional[RateLimiter] = None,
        wait_timeout: Optional[float] = None,
    ):
        self.wrapped = wrapped
        self.limiter = limiter or RateLimiter(
            qps=config.rate_limit.qps, burst=config.rate_limit.burst
        )
        self.wait_timeout = (
            wait_timeout
            if wait_timeout is not None
            else to_seconds(config.api_timeout_seconds)
        )

    def get(self, api_version, kind, name, namespace=None):
        return self._call("get", self.wrapped.get, api_version, kind, name, namespace)

    def list(self, api_version, kind, namespace=None, label_selector=None):
        return self._call(
            "list", self.wrapped.list, api_version, kind, namespace, label_selector
        )

    def watch(self, api_version, kind, *args, **kwargs):
        # Only opening the stream counts against the limit
        self._take_token("watch")
        return self.wrapped.watch(api_version, kind, *args, **kwargs)

    def create(self, body):
        return self._call("create", self.wrapped.create, body)

    def update(self, body):
        return self._call("update", self.wrapped.update, body)

    def update_status(self, body):
        return self._call("update_status", self.wrapped.update_status, body)

    def delete(self, api_version, kind, name, namespace=None, uid=None):
        return self._call(
            "delete", self.wrapped.delete, api_version, kind, name, namespace, uid=uid
        )

    ## Implementation Details ##################################################

    def _take_token(self, verb: str):
        if not self.limiter.acquire(timeout=self.wait_timeout):
            API_REQUESTS.labels(verb=verb, outcome="Throttled").inc()
            raise ThrottledError(f"Client rate limit exceeded for {verb}")

    def _call(self, verb: str, method, *args, **kwargs):
        self._take_token(verb)
        try:
            result = method(*args, **kwargs)
        except OperatorError as err:
            API_REQUESTS.labels(verb=verb, outcome=err.reason).inc()
            raise
        API_REQUESTS.labels(verb=verb, outcome="Success").inc()
        return result

"""
Per-key exponential backoff for failed reconciles
"""

# Standard
from typing import Callable, Dict, Hashable, Optional
import threading
import time

# First Party
import aconfig
import alog

# Local
from .. import config
from ..exceptions import assert_config
from ..utils import to_seconds

log = alog.use_channel("BCKOF")

# Exponents above this already exceed any sane ceiling
_MAX_EXPONENT = 64


class BackoffPolicy:
    """Computes retry delays of min(base_delay * 2^failures, max_delay) where
    failures counts the consecutive failures of a key. If give_up_after is set,
    a key whose failures span more than that many seconds is exhausted.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
        give_up_after: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert_config(base_delay > 0, f"Invalid backoff base delay: {base_delay}")
        assert_config(
            max_delay >= base_delay,
            f"Backoff max delay {max_delay} is less than base delay {base_delay}",
        )
        assert_config(
            give_up_after is None or give_up_after >= 0,
            f"Invalid backoff give_up_after: {give_up_after}",
        )
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.give_up_after = give_up_after
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Dict[Hashable, int] = {}
        self._first_failure: Dict[Hashable, float] = {}

    @classmethod
    def from_config(cls, backoff_config: Optional[aconfig.Config] = None) -> "BackoffPolicy":
        """Build the policy from the backoff section of the config"""
        backoff_config = backoff_config or config.backoff
        return cls(
            base_delay=to_seconds(backoff_config.base_delay),
            max_delay=to_seconds(backoff_config.max_delay),
            give_up_after=to_seconds(backoff_config.give_up_after),
        )

    def delay_for(self, failures: int) -> float:
        """The delay after the given number of earlier consecutive failures"""
        exponent = min(max(failures, 0), _MAX_EXPONENT)
        return min(self.base_delay * (2**exponent), self.max_delay)

    def next_delay(self, key: Hashable) -> float:
        """Record a failure for key and return the delay before its retry"""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
            self._first_failure.setdefault(key, self._clock())
        delay = self.delay_for(failures)
        log.debug2("Backoff for %s after %d failures: %ss", key, failures + 1, delay)
        return delay

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def exhausted(self, key: Hashable) -> bool:
        """Whether key has been failing for longer than give_up_after"""
        if self.give_up_after is None:
            return False
        with self._lock:
            first = self._first_failure.get(key)
        return first is not None and self._clock() - first >= self.give_up_after

    def reset(self, key: Hashable):
        """Forget the failure history of key"""
        with self._lock:
            self._failures.pop(key, None)
            self._first_failure.pop(key, None)

"""
The WorkQueue holds the keys waiting to be reconciled.

* Coalescing: a key is queued at most once no matter how often it is added
* Single flight: a key handed to a worker is not handed out again until the
  worker calls done. Keys added while processing are marked dirty and requeued
  on done.
* Delayed adds and backoff are scheduled on a shared TimerThread
"""

# Standard
from collections import deque
from enum import Enum
from typing import Deque, Dict, Hashable, Optional, Set
import threading
import time

# First Party
import alog

# Local
from ..metrics import WORK_QUEUE_DEPTH
from .backoff import BackoffPolicy
from .timer import TimerEvent, TimerThread

log = alog.use_channel("WRKQU")


class KeyState(Enum):
    """Scheduling state of a single key"""

    IDLE = "Idle"
    QUEUED = "Queued"
    WAITING = "Waiting"
    PROCESSING = "Processing"


class WorkQueue:
    """Coalescing, single-flight queue of reconcile keys"""

    def __init__(
        self,
        timer: Optional[TimerThread] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        """
        Args:
            timer:  Optional[TimerThread]
                Timer used for delayed adds. Started on first use.
            backoff:  Optional[BackoffPolicy]
                Policy for add_rate_limited. Defaults to one from config.
        """
        self.timer = timer or TimerThread(name="work_queue_timer")
        self.backoff = backoff or BackoffPolicy.from_config()
        self._condition = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        # Keys needing a reconcile, whether queued or waiting on processing
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: Dict[Hashable, TimerEvent] = {}
        self._shutting_down = False

    ## Producers ###############################################################

    def add(self, key: Hashable):
        """Mark key as needing a reconcile"""
        with self._condition:
            if self._shutting_down:
                return
            waiting = self._waiting.pop(key, None)
            if waiting is not None:
                waiting.cancel()
            if key in self._dirty:
                log.debug4("Coalescing add of %s", key)
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("%s is processing. Requeueing on done", key)
                return
            self._queue.append(key)
            self._update_depth()
            self._condition.notify()

    def add_after(self, key: Hashable, delay: float):
        """Add key once delay seconds have passed. An earlier pending add for
        the same key wins.
        """
        if delay <= 0:
            self.add(key)
            return
        with self._condition:
            if self._shutting_down or key in self._dirty:
                return
            existing = self._waiting.get(key)
            due = time.monotonic() + delay
            if existing is not None and not existing.stale and existing.time <= due:
                return
            if existing is not None:
                existing.cancel()
            self.timer.start_thread()
            event = self.timer.put_event(delay, self._fire, key)
            if event is not None:
                self._waiting[key] = event
        log.debug2("Scheduled %s in %ss", key, delay)

    def add_rate_limited(self, key: Hashable) -> float:
        """Add key after its backoff delay, returning the delay"""
        delay = self.backoff.next_delay(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable):
        """Clear the failure history of key"""
        self.backoff.reset(key)

    ## Consumers ###############################################################

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Take the next key for processing. Blocks until a key is available,
        the timeout elapses or the queue shuts down, returning None in the
        latter two cases.
        """
        with self._condition:
            if not self._condition.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            self._update_depth()
            return key

    def done(self, key: Hashable):
        """Mark processing of key finished. Requeues it if it was added again
        while processing.
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._update_depth()
                self._condition.notify()

    ## Lifecycle ###############################################################

    def shutdown(self):
        """Stop handing out keys and drop all pending delayed adds"""
        with self._condition:
            self._shutting_down = True
            for event in self._waiting.values():
                event.cancel()
            self._waiting.clear()
            self._condition.notify_all()
        self.timer.stop_thread()

    @property
    def is_shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    ## Introspection ###########################################################

    def state(self, key: Hashable) -> KeyState:
        with self._condition:
            if key in self._processing:
                return KeyState.PROCESSING
            if key in self._dirty:
                return KeyState.QUEUED
            if key in self._waiting:
                return KeyState.WAITING
            return KeyState.IDLE

    def processing(self) -> Set[Hashable]:
        with self._condition:
            return set(self._processing)

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)

    ## Implementation Details ##################################################

    def _fire(self, key: Hashable):
        with self._condition:
            self._waiting.pop(key, None)
        self.add(key)

    def _update_depth(self):
        WORK_QUEUE_DEPTH.set(len(self._queue))

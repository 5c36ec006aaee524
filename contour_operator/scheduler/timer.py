"""
The TimerThread is a helper class used to run scheduled events
"""

# Standard
from dataclasses import dataclass, field
from heapq import heappop, heappush
from typing import Any, Callable, Dict, List, Optional, Tuple
import itertools
import threading
import time

# First Party
import alog

# Local
from .base import ThreadBase

log = alog.use_channel("TMRTHRD")

# Minimum sleep so a burst of due events doesn't spin the loop
MIN_SLEEP_TIME = 0.001

_SEQUENCE = itertools.count()


@dataclass(order=True)
class TimerEvent:
    """A scheduled action. Events order by due time then insertion order."""

    time: float
    sequence: int = field(default_factory=lambda: next(_SEQUENCE))
    action: Callable = field(default=None, compare=False)
    args: Tuple = field(default_factory=tuple, compare=False)
    kwargs: Dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Mark the event so it is dropped instead of executed"""
        self.stale = True


class TimerThread(ThreadBase):
    """The TimerThread class is a helper class to run scheduled actions. This
    is very similar to threading.Timer except that it uses one shared thread
    for all events instead of a thread per event. Times are monotonic seconds.
    """

    def __init__(self, name: Optional[str] = None):
        super().__init__(name=name or "timer_thread", daemon=True)

        # A heap instead of a queue.PriorityQueue as synchronization is already
        # handled by the notify condition
        self.timer_heap: List[TimerEvent] = []
        self.notify_condition = threading.Condition()

    def run(self):
        """The TimerThread's control loop sleeps until the next scheduled
        event and executes all pending actions
        """
        while True:
            with self.notify_condition:
                time_to_sleep = self._get_time_to_sleep()
                if time_to_sleep:
                    log.debug4("Timer waiting %ss until next scheduled event", time_to_sleep)
                else:
                    log.debug4("Timer waiting until event queued")
                self.notify_condition.wait(timeout=time_to_sleep)

            if self.should_stop():
                return

            for event in self._get_all_current_events():
                log.debug3("Timer executing action for event: %s", event)
                try:
                    event.action(*event.args, **event.kwargs)
                except Exception as err:  # pylint: disable=broad-except
                    log.error("Timer action failed: %s", err, exc_info=True)

    ## Class Interface #########################################################

    def stop_thread(self):
        """Override stop_thread to wake the control loop"""
        super().stop_thread()
        with self.notify_condition:
            self.notify_condition.notify_all()

    ## Public Interface ########################################################

    def put_event(
        self, delay: float, action: Callable, *args: Any, **kwargs: Dict
    ) -> Optional[TimerEvent]:
        """Schedule an action

        Args:
            delay:  float
                Seconds from now to execute the action
            action:  Callable
                The action to execute
            *args:  Any
                Args to pass to the action
            **kwargs:  Dict
                Kwargs to pass to the action

        Returns:
            event:  Optional[TimerEvent]
                The event, which can be cancelled. None if the timer stopped.
        """
        if self.should_stop():
            return None

        event = TimerEvent(
            time=time.monotonic() + max(delay, 0), action=action, args=args, kwargs=kwargs
        )
        with self.notify_condition:
            heappush(self.timer_heap, event)
            self.notify_condition.notify_all()
        return event

    def pending(self) -> int:
        """Number of scheduled events that have not been cancelled"""
        with self.notify_condition:
            return len([event for event in self.timer_heap if not event.stale])

    ## Implementation Details ##################################################

    def _get_time_to_sleep(self) -> Optional[float]:
        with self.notify_condition:
            obj = self._peek_next_event()
            if obj:
                return max(obj.time - time.monotonic(), MIN_SLEEP_TIME)
            return None

    def _get_all_current_events(self) -> List[TimerEvent]:
        event_list = []
        now = time.monotonic()
        with self.notify_condition:
            while self.timer_heap and self.timer_heap[0].time <= now:
                obj = heappop(self.timer_heap)
                if obj.stale:
                    log.debug4("Skipping timer event %s", obj)
                    continue
                event_list.append(obj)
        return event_list

    def _peek_next_event(self) -> Optional[TimerEvent]:
        with self.notify_condition:
            if self.timer_heap:
                return self.timer_heap[0]
            return None

"""
Tests for the TimerThread
"""
# Standard
import threading
import time

# Third Party
import pytest

# Local
from contour_operator.scheduler import TimerThread
from contour_operator.test_helpers.helpers import configure_logging, wait_for

configure_logging()

## Helpers #####################################################################


class Counter:
    def __init__(self, initial_value=0):
        self.value = initial_value
        self.lock = threading.Lock()
        self.order = []

    def increment(self, value=1, tag=None):
        with self.lock:
            self.value += value
            if tag is not None:
                self.order.append(tag)


## Tests #######################################################################


@pytest.mark.timeout(5)
def test_timer_thread_happy_path():
    """Scheduled actions run with their args and kwargs"""
    timer = TimerThread()
    timer.start_thread()

    value_tracker = Counter()
    timer.put_event(0, value_tracker.increment)
    timer.put_event(0.1, value_tracker.increment)
    timer.put_event(0.2, value_tracker.increment, 2)
    timer.put_event(0.3, value_tracker.increment, value=2)
    assert wait_for(lambda: value_tracker.value == 6)
    timer.stop_thread()
    assert value_tracker.value == 6


@pytest.mark.timeout(5)
def test_timer_thread_runs_in_due_order():
    """Events run by due time, not by insertion order"""
    timer = TimerThread()
    value_tracker = Counter()
    timer.put_event(0.3, value_tracker.increment, tag="third")
    timer.put_event(0.1, value_tracker.increment, tag="first")
    timer.put_event(0.2, value_tracker.increment, tag="second")
    timer.start_thread()
    assert wait_for(lambda: len(value_tracker.order) == 3)
    timer.stop_thread()
    assert value_tracker.order == ["first", "second", "third"]


@pytest.mark.timeout(5)
def test_timer_thread_canceled():
    """A cancelled event is dropped"""
    timer = TimerThread()

    value_tracker = Counter()
    timer.put_event(0, value_tracker.increment)
    canceled_event = timer.put_event(0.2, value_tracker.increment)
    canceled_event.cancel()
    assert timer.pending() == 1

    timer.start_thread()
    time.sleep(0.5)
    timer.stop_thread()
    assert value_tracker.value == 1


@pytest.mark.timeout(5)
def test_timer_thread_action_error():
    """An action that raises does not stop later events"""
    timer = TimerThread()
    timer.start_thread()

    def explode():
        raise RuntimeError("boom")

    value_tracker = Counter()
    timer.put_event(0, explode)
    timer.put_event(0.1, value_tracker.increment)
    assert wait_for(lambda: value_tracker.value == 1)
    assert timer.is_alive()
    timer.stop_thread()


@pytest.mark.timeout(5)
def test_timer_thread_stopped():
    """A stopped timer exits and accepts no more events"""
    timer = TimerThread()
    timer.start_thread()
    timer.put_event(60, lambda: None)
    timer.stop_thread()
    timer.join(2)
    assert not timer.is_alive()
    assert timer.put_event(0, lambda: None) is None

"""
Tests for the coalescing, single-flight WorkQueue
"""
# Standard
import threading
import time

# Third Party
import pytest

# Local
from contour_operator.scheduler import BackoffPolicy, KeyState, WorkQueue
from contour_operator.test_helpers.helpers import configure_logging, wait_for

configure_logging()

## Helpers #####################################################################


@pytest.fixture
def queue():
    work_queue = WorkQueue(backoff=BackoffPolicy(base_delay=0.1, max_delay=0.4))
    yield work_queue
    work_queue.shutdown()


## Coalescing ##################################################################


def test_add_coalesces(queue):
    """Adding a queued key again does not duplicate it"""
    queue.add("a")
    queue.add("b")
    queue.add("a")
    assert len(queue) == 2
    assert queue.state("a") == KeyState.QUEUED
    assert queue.get(timeout=0) == "a"
    assert queue.get(timeout=0) == "b"
    assert queue.get(timeout=0) is None


def test_get_times_out_when_empty(queue):
    """An empty queue returns None after the timeout"""
    start = time.monotonic()
    assert queue.get(timeout=0.1) is None
    assert time.monotonic() - start >= 0.09


## Single flight ###############################################################


def test_processing_key_not_handed_out_twice(queue):
    """A key added while processing waits until done"""
    queue.add("a")
    assert queue.get(timeout=0) == "a"
    assert queue.state("a") == KeyState.PROCESSING
    assert queue.processing() == {"a"}

    queue.add("a")
    queue.add("a")
    assert len(queue) == 0
    assert queue.get(timeout=0) is None

    queue.done("a")
    assert len(queue) == 1
    assert queue.state("a") == KeyState.QUEUED
    assert queue.get(timeout=0) == "a"
    queue.done("a")
    assert queue.state("a") == KeyState.IDLE
    assert len(queue) == 0


def test_done_without_readd_is_idle(queue):
    """A key finished without new adds is not requeued"""
    queue.add("a")
    queue.get(timeout=0)
    queue.done("a")
    assert queue.state("a") == KeyState.IDLE
    assert queue.processing() == set()


@pytest.mark.timeout(10)
def test_single_flight_under_concurrency(queue):
    """Concurrent consumers never hold the same key at once"""
    lock = threading.Lock()
    in_flight = set()
    overlaps = []
    handled = []
    stop = threading.Event()

    def consume():
        while not stop.is_set():
            key = queue.get(timeout=0.05)
            if key is None:
                continue
            with lock:
                if key in in_flight:
                    overlaps.append(key)
                in_flight.add(key)
            time.sleep(0.005)
            with lock:
                in_flight.discard(key)
                handled.append(key)
            queue.done(key)

    consumers = [threading.Thread(target=consume, daemon=True) for _ in range(4)]
    for consumer in consumers:
        consumer.start()
    for _ in range(50):
        for key in ["a", "b", "c"]:
            queue.add(key)
        time.sleep(0.001)
    assert wait_for(lambda: len(queue) == 0 and not queue.processing())
    stop.set()
    for consumer in consumers:
        consumer.join(2)

    assert not overlaps
    assert set(handled) == {"a", "b", "c"}
    # Coalescing collapses most of the 150 adds
    assert len(handled) < 150


## Delayed adds ################################################################


@pytest.mark.timeout(5)
def test_add_after(queue):
    """A delayed key becomes available once its delay passes"""
    queue.add_after("a", 0.2)
    assert queue.state("a") == KeyState.WAITING
    assert queue.get(timeout=0) is None
    assert queue.get(timeout=2) == "a"


def test_add_after_zero_is_immediate(queue):
    queue.add_after("a", 0)
    assert queue.get(timeout=0) == "a"


@pytest.mark.timeout(5)
def test_add_after_earliest_wins(queue):
    """Of two pending delayed adds for a key the earlier is kept"""
    queue.add_after("a", 0.2)
    queue.add_after("a", 60)
    assert queue.get(timeout=2) == "a"
    queue.done("a")

    queue.add_after("b", 60)
    queue.add_after("b", 0.1)
    assert queue.get(timeout=2) == "b"
    queue.done("b")
    assert queue.timer.pending() == 0


def test_add_cancels_waiting(queue):
    """An immediate add replaces a pending delayed add"""
    queue.add_after("a", 60)
    queue.add("a")
    assert queue.timer.pending() == 0
    assert queue.get(timeout=0) == "a"
    queue.done("a")
    assert queue.state("a") == KeyState.IDLE


def test_add_after_ignored_when_queued(queue):
    """A key that is already queued does not also wait"""
    queue.add("a")
    queue.add_after("a", 60)
    assert queue.state("a") == KeyState.QUEUED
    assert queue.timer.pending() == 0


@pytest.mark.timeout(5)
def test_delayed_add_during_processing_requeues_on_done(queue):
    """A delayed add that fires while the key is processing is not lost"""
    queue.add("a")
    assert queue.get(timeout=0) == "a"
    queue.add_after("a", 0.05)
    assert wait_for(lambda: queue.timer.pending() == 0)
    assert queue.get(timeout=0) is None
    queue.done("a")
    assert queue.get(timeout=2) == "a"


## Rate limiting ###############################################################


@pytest.mark.timeout(5)
def test_add_rate_limited_grows_and_forget_resets(queue):
    """Each rate limited add backs off further until forgotten"""
    assert queue.add_rate_limited("a") == pytest.approx(0.1)
    assert queue.get(timeout=2) == "a"
    queue.done("a")
    assert queue.add_rate_limited("a") == pytest.approx(0.2)
    assert queue.get(timeout=2) == "a"
    queue.done("a")

    queue.forget("a")
    assert queue.backoff.failures("a") == 0
    assert queue.add_rate_limited("a") == pytest.approx(0.1)


## Shutdown ####################################################################


@pytest.mark.timeout(5)
def test_shutdown_wakes_consumers(queue):
    """Blocked consumers return None once the queue shuts down"""
    results = []

    def consume():
        results.append(queue.get())

    consumer = threading.Thread(target=consume, daemon=True)
    consumer.start()
    time.sleep(0.1)
    queue.shutdown()
    consumer.join(2)
    assert results == [None]
    assert queue.is_shutting_down


def test_shutdown_drops_pending(queue):
    """After shutdown new adds are ignored and delayed adds cancelled"""
    queue.add_after("a", 60)
    queue.shutdown()
    assert queue.timer.pending() == 0
    queue.add("b")
    assert len(queue) == 0
    assert queue.get(timeout=0) is None


def test_done_after_shutdown_does_not_requeue(queue):
    queue.add("a")
    queue.get(timeout=0)
    queue.add("a")
    queue.shutdown()
    queue.done("a")
    assert len(queue) == 0

"""
Tests for result handling and the reconcile worker pool
"""
# Standard
from unittest import mock
import threading
import time

# Third Party
import pytest

# Local
from contour_operator.exceptions import TransientError
from contour_operator.reconcile import ReconcileResult
from contour_operator.scheduler import (
    BackoffPolicy,
    KeyState,
    WorkerPool,
    WorkQueue,
    handle_result,
)
from contour_operator.test_helpers.helpers import TEST_KEY, configure_logging, wait_for

configure_logging()

## Helpers #####################################################################


class FakeReconciler:
    """Reconciler stand in that returns scripted results and tracks overlap"""

    def __init__(self, results=None, duration=0.0):
        self.results = list(results or [])
        self.duration = duration
        self.lock = threading.Lock()
        self.in_flight = set()
        self.overlaps = []
        self.calls = []
        self.exhausted = []

    def safe_reconcile(self, key):
        with self.lock:
            if key in self.in_flight:
                self.overlaps.append(key)
            self.in_flight.add(key)
            self.calls.append(key)
            result = self.results.pop(0) if self.results else ReconcileResult()
        time.sleep(self.duration)
        with self.lock:
            self.in_flight.discard(key)
        return result

    def record_retries_exhausted(self, key, error):
        self.exhausted.append((key, error))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def queue():
    work_queue = WorkQueue(backoff=BackoffPolicy(base_delay=0.05, max_delay=0.2))
    yield work_queue
    work_queue.shutdown()


## handle_result ###############################################################


def test_handle_result_success_forgets(queue):
    """A complete reconcile clears the key's failure history"""
    queue.backoff.next_delay(TEST_KEY)
    handle_result(queue, FakeReconciler(), TEST_KEY, ReconcileResult())
    assert queue.backoff.failures(TEST_KEY) == 0
    assert queue.state(TEST_KEY) == KeyState.IDLE


def test_handle_result_terminal_not_requeued(queue):
    """A terminal result is never retried"""
    result = ReconcileResult(
        requeue=True, error=ValueError("bad"), terminal=True
    )
    handle_result(queue, FakeReconciler(), TEST_KEY, result)
    assert queue.state(TEST_KEY) == KeyState.IDLE
    assert queue.timer.pending() == 0


def test_handle_result_error_backs_off(queue):
    """An error without a delay is requeued with growing backoff"""
    result = ReconcileResult(requeue=True, error=TransientError("flaky"))
    handle_result(queue, FakeReconciler(), TEST_KEY, result)
    assert queue.state(TEST_KEY) == KeyState.WAITING
    assert queue.backoff.failures(TEST_KEY) == 1
    handle_result(queue, FakeReconciler(), TEST_KEY, result)
    assert queue.backoff.failures(TEST_KEY) == 2


def test_handle_result_explicit_delay(queue):
    """An explicit delay is honored and does not count as a failure"""
    queue.backoff.next_delay(TEST_KEY)
    result = ReconcileResult(requeue=True, requeue_after=30)
    with mock.patch.object(queue, "add_after") as add_after:
        handle_result(queue, FakeReconciler(), TEST_KEY, result)
    add_after.assert_called_once_with(TEST_KEY, 30)
    assert queue.backoff.failures(TEST_KEY) == 0


def test_handle_result_immediate_requeue(queue):
    """A zero delay requeues right away"""
    handle_result(
        queue, FakeReconciler(), TEST_KEY, ReconcileResult(requeue=True, requeue_after=0)
    )
    assert queue.state(TEST_KEY) == KeyState.QUEUED


def test_handle_result_retries_exhausted():
    """Once the backoff gives up, the reconciler records it and the key rests"""
    clock = FakeClock()
    queue = WorkQueue(
        backoff=BackoffPolicy(base_delay=1, max_delay=10, give_up_after=60, clock=clock)
    )
    reconciler = FakeReconciler()
    error = TransientError("still down")
    result = ReconcileResult(requeue=True, error=error)
    try:
        handle_result(queue, reconciler, TEST_KEY, result)
        assert not reconciler.exhausted
        clock.now += 61
        handle_result(queue, reconciler, TEST_KEY, result)
        assert reconciler.exhausted == [(TEST_KEY, error)]
        assert queue.backoff.failures(TEST_KEY) == 0
    finally:
        queue.shutdown()


## WorkerPool ##################################################################


@pytest.mark.timeout(10)
def test_worker_pool_processes_keys(queue):
    """Every added key is reconciled by the pool"""
    reconciler = FakeReconciler()
    pool = WorkerPool(queue, reconciler, workers=3)
    pool.start()
    assert wait_for(pool.is_alive)
    assert pool.running() == 3
    for idx in range(10):
        queue.add(f"key-{idx}")
    assert wait_for(lambda: len(set(reconciler.calls)) == 10)
    queue.shutdown()
    pool.stop(timeout=2)
    assert pool.running() == 0


@pytest.mark.timeout(10)
def test_worker_pool_single_flight(queue):
    """A key is never reconciled by two workers at once"""
    reconciler = FakeReconciler(duration=0.02)
    pool = WorkerPool(queue, reconciler, workers=4)
    pool.start()
    for _ in range(20):
        queue.add(TEST_KEY)
        time.sleep(0.005)
    assert wait_for(lambda: len(queue) == 0 and not queue.processing())
    queue.shutdown()
    pool.stop(timeout=2)
    assert reconciler.calls
    assert not reconciler.overlaps


@pytest.mark.timeout(10)
def test_worker_retries_until_success(queue):
    """A failed reconcile is retried with backoff until it succeeds"""
    reconciler = FakeReconciler(
        results=[
            ReconcileResult(requeue=True, error=TransientError("one")),
            ReconcileResult(requeue=True, error=TransientError("two")),
            ReconcileResult(),
        ]
    )
    pool = WorkerPool(queue, reconciler, workers=1)
    pool.start()
    queue.add(TEST_KEY)
    assert wait_for(lambda: len(reconciler.calls) == 3)
    assert wait_for(lambda: queue.backoff.failures(TEST_KEY) == 0)
    time.sleep(0.3)
    assert len(reconciler.calls) == 3
    queue.shutdown()
    pool.stop(timeout=2)


def test_worker_pool_start_is_idempotent(queue):
    pool = WorkerPool(queue, FakeReconciler(), workers=2)
    pool.start()
    workers = list(pool.workers)
    pool.start()
    assert pool.workers == workers
    queue.shutdown()
    pool.stop(timeout=2)

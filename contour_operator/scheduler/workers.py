"""
The worker pool pulls keys from the WorkQueue and reconciles them
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .. import config
from ..model import ReconcileKey
from ..reconcile import Reconciler, ReconcileResult
from .base import ThreadBase
from .leader_election import LeadershipManagerBase
from .work_queue import WorkQueue

log = alog.use_channel("WRKRS")

# Seconds a worker blocks on the queue before re-checking its preconditions
QUEUE_POLL_TIME = 0.5


def handle_result(
    queue: WorkQueue, reconciler: Reconciler, key: ReconcileKey, result: ReconcileResult
):
    """Requeue the key according to the outcome of its reconcile

    * Terminal or complete: the failure history is cleared and nothing is
      scheduled
    * Error without an explicit delay: requeued with backoff, unless the
      backoff policy is exhausted
    * Explicit delay: requeued after that delay
    """
    if result.terminal or not result.requeue:
        queue.forget(key)
        return

    if result.error is not None and result.requeue_after is None:
        if queue.backoff.exhausted(key):
            reconciler.record_retries_exhausted(key, result.error)
            queue.forget(key)
            return
        delay = queue.add_rate_limited(key)
        log.debug("Requeueing %s with backoff of %ss", key, delay)
        return

    queue.forget(key)
    queue.add_after(key, result.requeue_after or 0)


class Worker(ThreadBase):
    """A single reconcile worker"""

    def __init__(
        self,
        index: int,
        queue: WorkQueue,
        reconciler: Reconciler,
        leadership_manager: Optional[LeadershipManagerBase] = None,
    ):
        super().__init__(
            name=f"reconcile_worker_{index}",
            daemon=True,
            leadership_manager=leadership_manager,
        )
        self.queue = queue
        self.reconciler = reconciler

    def run(self):
        while True:
            if not self.check_preconditions():
                return
            key = self.queue.get(timeout=QUEUE_POLL_TIME)
            if key is None:
                if self.queue.is_shutting_down:
                    return
                continue
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: ReconcileKey):
        log.debug2("%s processing %s", self.name, key)
        result = self.reconciler.safe_reconcile(key)
        handle_result(self.queue, self.reconciler, key, result)


class WorkerPool:
    """Runs a fixed number of Worker threads over one queue"""

    def __init__(
        self,
        queue: WorkQueue,
        reconciler: Reconciler,
        workers: Optional[int] = None,
        leadership_manager: Optional[LeadershipManagerBase] = None,
    ):
        self.queue = queue
        self.reconciler = reconciler
        self.size = workers or config.workers
        self.leadership_manager = leadership_manager
        self.workers: List[Worker] = []

    def start(self):
        if self.workers:
            return
        self.workers = [
            Worker(index, self.queue, self.reconciler, self.leadership_manager)
            for index in range(self.size)
        ]
        for worker in self.workers:
            worker.start_thread()

    def stop(self, timeout: Optional[float] = None):
        """Signal every worker and wait for in-flight reconciles to finish"""
        for worker in self.workers:
            worker.stop_thread()
        for worker in self.workers:
            worker.join(timeout)

    def is_alive(self) -> bool:
        return bool(self.workers) and all(worker.is_alive() for worker in self.workers)

    def running(self) -> int:
        return len([worker for worker in self.workers if worker.is_alive()])

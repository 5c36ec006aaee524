"""
The reconcile scheduler: work queue, backoff, workers, watch producers and
leader election
"""

# Local
from .backoff import BackoffPolicy
from .base import ThreadBase
from .leader_election import (
    AlwaysLeaderManager,
    LeadershipManagerBase,
    LeaseLeadershipManager,
)
from .timer import TimerEvent, TimerThread
from .watch import WatchThread
from .work_queue import KeyState, WorkQueue
from .workers import Worker, WorkerPool, handle_result

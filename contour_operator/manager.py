"""
The Operator assembles the cluster client, cache, reconciler and scheduler
threads into one running process
"""

# Standard
from typing import List, Optional
import time

# First Party
import alog

# Local
from . import config, constants
from .admission import create_app
from .cluster import (
    ClusterClientBase,
    DryRunClusterClient,
    OpenshiftClusterClient,
    RateLimitedClient,
)
from .health import ServerThread, create_health_app
from .metrics import start_metrics_server
from .model import MANAGED_KINDS
from .observer import CacheObserver, ObjectCache
from .reconcile import Reconciler
from .scheduler import (
    AlwaysLeaderManager,
    BackoffPolicy,
    LeadershipManagerBase,
    LeaseLeadershipManager,
    TimerThread,
    WatchThread,
    WorkerPool,
    WorkQueue,
)

log = alog.use_channel("MNGR")


def make_client(resources: Optional[List[dict]] = None) -> ClusterClientBase:
    """Build the rate limited client for the configured mode"""
    if config.dry_run:
        log.info("Running DRY RUN")
        wrapped = DryRunClusterClient(resources=resources)
    else:
        wrapped = OpenshiftClusterClient()
    return RateLimitedClient(wrapped)


class Operator:  # pylint: disable=too-many-instance-attributes
    """One operator process: watch producers feed the cache and the work
    queue, and the worker pool reconciles the queued keys
    """

    def __init__(
        self,
        client: Optional[ClusterClientBase] = None,
        workers: Optional[int] = None,
        leadership_manager: Optional[LeadershipManagerBase] = None,
        watch_namespace: Optional[str] = None,
    ):
        """
        Args:
            client:  Optional[ClusterClientBase]
                The client for every cluster call. Defaults to make_client().
            workers:  Optional[int]
                Number of reconcile workers. Defaults to config.workers.
            leadership_manager:  Optional[LeadershipManagerBase]
                Leader election. Defaults to a lease when enabled in config.
            watch_namespace:  Optional[str]
                Only reconcile Contours in this namespace
        """
        self.client = client or make_client()
        self.cache = ObjectCache()
        self.observer = CacheObserver(self.cache)
        self.reconciler = Reconciler(self.client, self.observer)
        self.timer = TimerThread()
        self.queue = WorkQueue(timer=self.timer, backoff=BackoffPolicy.from_config())

        if leadership_manager is None:
            if config.leader_election.enabled:
                leadership_manager = LeaseLeadershipManager(self.client)
            else:
                leadership_manager = AlwaysLeaderManager()
        self.leadership_manager = leadership_manager

        self.pool = WorkerPool(
            self.queue, self.reconciler, workers, leadership_manager=leadership_manager
        )

        namespace = watch_namespace or config.watch_namespace or None
        self.watches = [
            WatchThread(
                self.client,
                self.cache,
                self.queue,
                constants.CONTOUR_API_VERSION,
                constants.CONTOUR_KIND,
                namespace=namespace,
                leadership_manager=leadership_manager,
            )
        ]
        # Owned objects live in the operand namespaces, so these watches are
        # cluster wide and restricted to labelled objects
        for kind_class in MANAGED_KINDS:
            self.watches.append(
                WatchThread(
                    self.client,
                    self.cache,
                    self.queue,
                    kind_class.API_VERSION,
                    kind_class.KIND,
                    label_selector=constants.OWNER_NAME_LABEL,
                    leadership_manager=leadership_manager,
                )
            )
        self.cache.expect_kinds(watch.kind for watch in self.watches)
        self.servers: List[ServerThread] = []

    ## Lifecycle ###############################################################

    def start(self):
        """Start leader election, the timer, the watches and the workers"""
        log.info("Starting contour operator")
        self.leadership_manager.acquire()
        self.timer.start_thread()
        for watch in self.watches:
            watch.start_thread()
        self.pool.start()

    def start_servers(self):
        """Start the configured probe, metrics and webhook servers"""
        if config.metrics.enabled:
            start_metrics_server(config.metrics.address, config.metrics.port)
        if config.health.enabled:
            self.servers.append(
                ServerThread(
                    create_health_app(self.is_healthy, self.is_ready),
                    config.health.address,
                    config.health.port,
                    name="health_server",
                )
            )
        if config.webhook.enabled:
            self.servers.append(
                ServerThread(
                    create_app(),
                    config.webhook.address,
                    config.webhook.port,
                    name="webhook_server",
                    ssl_certfile=config.webhook.cert_file,
                    ssl_keyfile=config.webhook.key_file,
                )
            )
        for server in self.servers:
            server.start()

    def stop(self, timeout: Optional[float] = None):
        """Stop every thread. In-flight reconciles are allowed to finish."""
        log.info("Stopping contour operator")
        self.queue.shutdown()
        for watch in self.watches:
            watch.stop_thread()
        self.pool.stop(timeout)
        self.timer.stop_thread()
        for server in self.servers:
            server.stop()
        self.leadership_manager.release()

    ## Probes ##################################################################

    def is_healthy(self) -> bool:
        return self.pool.is_alive() and all(watch.is_alive() for watch in self.watches)

    def is_ready(self) -> bool:
        return self.is_healthy() and self.cache.has_synced()

    def wait_for_sync(self, timeout: float = 10.0, poll: float = 0.05) -> bool:
        """Block until every watched kind completed its initial list"""
        end = time.monotonic() + timeout
        while time.monotonic() < end:
            if self.cache.has_synced():
                return True
            time.sleep(poll)
        return self.cache.has_synced()

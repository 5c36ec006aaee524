"""The WatchThread Class keeps the cache of one kind up to date and enqueues
the Contours affected by each change
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import config, constants
from ..cluster import ClusterClientBase
from ..exceptions import ExpiredError
from ..model import ReconcileKey, get_owner_key
from ..observer import ObjectCache
from ..utils import to_seconds
from .base import ThreadBase
from .leader_election import LeadershipManagerBase
from .work_queue import WorkQueue

log = alog.use_channel("WTCHTHRD")

# Server side timeout of a single watch request. The watch is resumed from the
# last seen resourceVersion after it ends.
WATCH_TIMEOUT = 300


class WatchThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """The WatchThread lists a kind into the cache, then watches it from the
    list's resourceVersion. Every event updates the cache and enqueues the key
    of the owning Contour (or of the Contour itself). A watch that expires is
    replaced by a fresh list.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        client: ClusterClientBase,
        cache: ObjectCache,
        queue: WorkQueue,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        leadership_manager: Optional[LeadershipManagerBase] = None,
        watch_timeout: Optional[float] = WATCH_TIMEOUT,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client to list and watch with
            cache:  ObjectCache
                The cache to feed
            queue:  WorkQueue
                The queue receiving the affected keys
            api_version:  str
                The api_version to watch
            kind:  str
                The kind to watch
            namespace:  Optional[str]
                The namespace to watch. If none then cluster-wide
            label_selector:  Optional[str]
                Restricts the watched objects
            leadership_manager:  Optional[LeadershipManagerBase]
                The leadership manager to use for elections
            watch_timeout:  Optional[float]
                Seconds before a single watch request is restarted
        """
        self.client = client
        self.cache = cache
        self.queue = queue
        self.api_version = api_version
        self.kind = kind
        self.namespace = namespace
        self.label_selector = label_selector
        self.watch_timeout = watch_timeout
        self.retry_delay = to_seconds(config.watch_retry_delay)

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, leadership_manager=leadership_manager)

    def run(self):
        resource_version = None
        while True:
            if not self.check_preconditions():
                log.debug("Checking preconditions failed. Shutting down")
                return
            try:
                if resource_version is None:
                    resource_version = self.relist()

                for event in self.client.watch(
                    self.api_version,
                    self.kind,
                    namespace=self.namespace,
                    label_selector=self.label_selector,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout,
                    stop_event=self.shutdown,
                ):
                    if self.should_stop():
                        return
                    log.debug3("Received %s event for %s", event.type.value, event.identity)
                    self.cache.apply_event(event)
                    resource_version = event.resource_version or resource_version
                    self._enqueue(event.resource)

            except ExpiredError:
                log.info("Watch of %s expired. Relisting", self.kind)
                resource_version = None

            except Exception as exc:  # pylint: disable=broad-except
                log.warning(
                    "Exception raised when attempting to watch %s: %s",
                    self.kind,
                    repr(exc),
                    exc_info=exc,
                )
                if not self.wait_on_precondition(self.retry_delay):
                    log.debug("Checking preconditions failed during retry. Shutting down")
                    return

    def relist(self) -> str:
        """List the kind into the cache and enqueue every affected key

        Returns:
            resource_version:  str
                The resourceVersion to start watching from
        """
        listing = self.client.list(
            self.api_version,
            self.kind,
            namespace=self.namespace,
            label_selector=self.label_selector,
        )
        dropped = self.cache.replace(self.kind, listing.items)
        # Objects deleted while no watch was open produce no event
        for item in listing.items + dropped:
            self._enqueue(item)
        log.debug(
            "Listed %d objects of kind %s, %d gone since the last list",
            len(listing.items),
            self.kind,
            len(dropped),
        )
        return listing.resource_version

    ## Implementation Details ##################################################

    def _enqueue(self, resource: dict):
        if resource.get("kind") == constants.CONTOUR_KIND:
            key = ReconcileKey.from_body(resource)
        else:
            key = get_owner_key(resource)
        if key is not None:
            log.debug2("Requesting reconcile for %s", key)
            self.queue.add(key)

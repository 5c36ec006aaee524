"""
The DryRunClusterClient implements the cluster client interface without talking
to a cluster. The state of the cluster is held in a local map and the server
side behaviors the operator depends on are emulated: resourceVersion and
generation bookkeeping, optimistic concurrency, finalizer-gated deletion and
watch streams.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import threading
import uuid

# First Party
import alog

# Local
from ..exceptions import AlreadyExistsError, ConflictError, ExpiredError, NotFoundError
from ..model import ObjectIdentity
from ..utils import now_timestamp
from .base import ClusterClientBase, ObjectList
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# Number of past events kept for watches resuming from a resourceVersion
EVENT_HISTORY_SIZE = 1000

# Top level fields that are not part of the object's spec for the purposes of
# generation tracking
NON_SPEC_FIELDS = ["apiVersion", "kind", "metadata", "status"]


class DryRunClusterClient(ClusterClientBase):
    """
    Cluster client which doesn't actually touch a cluster!
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional set of objects already present"""
        self._lock = RLock()
        self._objects: Dict[ObjectIdentity, dict] = {}
        self._resource_version = itertools.count(1)
        self._current_version = 0
        self._history: List[Tuple[int, KubeWatchEvent]] = []
        self._watchers: List[Tuple[Tuple[str, str, Optional[str], Optional[str]], Queue]] = []
        for resource in resources or []:
            self.create(resource)

    ## Interface ###############################################################

    def get(self, api_version, kind, name, namespace=None):
        log.debug3("DRY RUN get [%s/%s] in [%s]", kind, name, namespace)
        with self._lock:
            current = self._objects.get(
                ObjectIdentity(api_version, kind, namespace or "", name)
            )
            return copy.deepcopy(current)

    def list(self, api_version, kind, namespace=None, label_selector=None):
        log.debug3("DRY RUN list [%s] in [%s] %s", kind, namespace, label_selector)
        with self._lock:
            items = [
                copy.deepcopy(body)
                for identity, body in sorted(self._objects.items())
                if self._matches(identity, body, api_version, kind, namespace, label_selector)
            ]
            return ObjectList(items=items, resource_version=str(self._current_version))

    def watch(  # pylint: disable=too-many-arguments
        self,
        api_version,
        kind,
        namespace=None,
        label_selector=None,
        resource_version=None,
        timeout_seconds=None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        event_queue = Queue()
        watch_filter = (api_version, kind, namespace, label_selector)

        # Collect the starting events and subscribe atomically so nothing is
        # missed between the two
        with self._lock:
            if resource_version is None:
                initial = [
                    KubeWatchEvent(KubeEventType.ADDED, copy.deepcopy(body))
                    for identity, body in sorted(self._objects.items())
                    if self._matches(identity, body, *watch_filter)
                ]
            else:
                start = int(resource_version)
                if self._history and start < self._history[0][0] - 1:
                    raise ExpiredError(f"resourceVersion {start} is too old")
                initial = [
                    copy.deepcopy(event)
                    for version, event in self._history
                    if version > start
                    and self._matches(event.identity, event.resource, *watch_filter)
                ]
            for event in initial:
                event_queue.put(event)
            self._watchers.append((watch_filter, event_queue))

        end_time = datetime.max
        if timeout_seconds:
            end_time = datetime.now() + timedelta(seconds=timeout_seconds)

        try:
            while True:
                if stop_event is not None and stop_event.is_set():
                    return
                if datetime.now() > end_time:
                    return
                try:
                    event = event_queue.get(timeout=0.05)
                except Empty:
                    continue
                log.debug4("Yielding event %s", event)
                yield event
        finally:
            with self._lock:
                self._watchers = [
                    watcher for watcher in self._watchers if watcher[1] is not event_queue
                ]

    def create(self, body):
        body = copy.deepcopy(body)
        identity = ObjectIdentity.from_body(body)
        log.debug2("DRY RUN create %s", identity)
        with self._lock:
            if identity in self._objects:
                raise AlreadyExistsError(f"{identity} already exists")
            metadata = body.setdefault("metadata", {})
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = now_timestamp()
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_version()
            metadata.pop("deletionTimestamp", None)
            self._objects[identity] = body
            self._emit(KubeEventType.ADDED, body)
            return copy.deepcopy(body)

    def update(self, body):
        return self._update(body, status_only=False)

    def update_status(self, body):
        return self._update(body, status_only=True)

    def delete(self, api_version, kind, name, namespace=None, uid=None):
        identity = ObjectIdentity(api_version, kind, namespace or "", name)
        log.debug2("DRY RUN delete %s", identity)
        with self._lock:
            current = self._objects.get(identity)
            if current is None:
                return False
            metadata = current["metadata"]
            if uid is not None and metadata.get("uid") != uid:
                raise ConflictError(f"uid precondition failed for {identity}")
            if metadata.get("finalizers"):
                if not metadata.get("deletionTimestamp"):
                    metadata["deletionTimestamp"] = now_timestamp()
                    metadata["resourceVersion"] = self._next_version()
                    self._emit(KubeEventType.MODIFIED, current)
                return True
            del self._objects[identity]
            metadata["resourceVersion"] = self._next_version()
            self._emit(KubeEventType.DELETED, current)
            return True

    ## Implementation Details ##################################################

    def _update(self, body: dict, status_only: bool) -> dict:
        body = copy.deepcopy(body)
        identity = ObjectIdentity.from_body(body)
        log.debug2("DRY RUN %s %s", "update_status" if status_only else "update", identity)
        with self._lock:
            current = self._objects.get(identity)
            if current is None:
                raise NotFoundError(f"{identity} not found")
            requested_version = body.get("metadata", {}).get("resourceVersion")
            current_meta = current["metadata"]
            if requested_version and requested_version != current_meta["resourceVersion"]:
                raise ConflictError(
                    f"{identity} resourceVersion {requested_version} is stale"
                )

            if status_only:
                updated = copy.deepcopy(current)
                if "status" in body:
                    updated["status"] = body["status"]
                else:
                    updated.pop("status", None)
            else:
                updated = body
                metadata = updated.setdefault("metadata", {})
                for field in ["uid", "creationTimestamp", "deletionTimestamp", "generation"]:
                    if field in current_meta:
                        metadata[field] = current_meta[field]
                    else:
                        metadata.pop(field, None)
                if "status" in current:
                    updated["status"] = current["status"]
                else:
                    updated.pop("status", None)
                if self._spec_of(updated) != self._spec_of(current):
                    metadata["generation"] = current_meta.get("generation", 1) + 1

            updated["metadata"]["resourceVersion"] = current_meta["resourceVersion"]
            if updated == current:
                log.debug3("No change for %s", identity)
                return copy.deepcopy(current)

            updated["metadata"]["resourceVersion"] = self._next_version()

            # Deleting objects whose finalizers were all removed go away
            if updated["metadata"].get("deletionTimestamp") and not updated[
                "metadata"
            ].get("finalizers"):
                del self._objects[identity]
                self._emit(KubeEventType.DELETED, updated)
                return copy.deepcopy(updated)

            self._objects[identity] = updated
            self._emit(KubeEventType.MODIFIED, updated)
            return copy.deepcopy(updated)

    def _next_version(self) -> str:
        self._current_version = next(self._resource_version)
        return str(self._current_version)

    def _emit(self, event_type: KubeEventType, body: dict):
        """Record an event and hand it to all matching watchers. Must be called
        with the lock held.
        """
        event = KubeWatchEvent(event_type, copy.deepcopy(body))
        self._history.append((self._current_version, event))
        if len(self._history) > EVENT_HISTORY_SIZE:
            self._history.pop(0)
        for watch_filter, event_queue in self._watchers:
            if self._matches(event.identity, event.resource, *watch_filter):
                event_queue.put(copy.deepcopy(event))

    @staticmethod
    def _spec_of(body: dict) -> dict:
        return {k: v for k, v in body.items() if k not in NON_SPEC_FIELDS}

    @staticmethod
    def _matches(  # pylint: disable=too-many-arguments
        identity: ObjectIdentity,
        body: dict,
        api_version: str,
        kind: str,
        namespace: Optional[str],
        label_selector: Optional[str],
    ) -> bool:
        if identity.kind != kind or (api_version and identity.api_version != api_version):
            return False
        if namespace and identity.namespace != namespace:
            return False
        labels = body.get("metadata", {}).get("labels") or {}
        return match_label_selector(labels, label_selector)


def match_label_selector(labels: Dict[str, str], label_selector: Optional[str]) -> bool:
    """Match labels against an equality based selector string. Supported terms
    are "key=value", "key==value", "key!=value", "key" and "!key".
    """
    if not label_selector:
        return True
    for term in label_selector.split(","):
        term = term.strip()
        if not term:
            continue
        if "!=" in term:
            key, value = term.split("!=", 1)
            if labels.get(key.strip()) == value.strip():
                return False
        elif "=" in term:
            key, value = term.replace("==", "=").split("=", 1)
            if labels.get(key.strip()) != value.strip():
                return False
        elif term.startswith("!"):
            if term[1:] in labels:
                return False
        elif term not in labels:
            return False
    return True

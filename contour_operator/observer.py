"""
The live-state observer. Owned objects are read from a local cache that the
watch producers keep up to date, so observation never touches the network.
"""

# Standard
from threading import RLock
from typing import Dict, Iterable, List, Optional, Set
import copy

# First Party
import alog

# Local
from .cluster.kube_event import KubeEventType, KubeWatchEvent
from .model import KIND_REGISTRY, KubeObject, ObjectIdentity, ReconcileKey, from_dict
from .model.identity import get_owner_key

log = alog.use_channel("OBSRV")


class ObjectCache:
    """Thread safe store of the last observed state of every watched object,
    indexed by owning Contour
    """

    def __init__(self):
        self._lock = RLock()
        self._objects: Dict[ObjectIdentity, dict] = {}
        self._owner_index: Dict[ReconcileKey, Set[ObjectIdentity]] = {}
        self._expected_kinds: Set[str] = set()
        self._synced_kinds: Set[str] = set()

    ## Population ##############################################################

    def expect_kinds(self, kinds: Iterable[str]):
        """Register the kinds that must complete an initial list before the
        cache reports itself synced
        """
        with self._lock:
            self._expected_kinds.update(kinds)

    def replace(self, kind: str, items: List[dict]) -> List[dict]:
        """Replace every cached object of a kind with the result of a fresh list
        and mark the kind synced

        Args:
            kind:  str
                The kind that was listed
            items:  List[dict]
                The full listing

        Returns:
            dropped:  List[dict]
                The cached bodies of objects that are missing from the listing
        """
        listed = {ObjectIdentity.from_body(body) for body in items}
        with self._lock:
            cached = [ident for ident in self._objects if ident.kind == kind]
            dropped = [
                self._objects[ident] for ident in cached if ident not in listed
            ]
            for identity in cached:
                self._remove(identity)
            for body in items:
                self._upsert(body)
            self._synced_kinds.add(kind)
        log.debug2(
            "Cache synced %d objects of kind %s (%d dropped)",
            len(items),
            kind,
            len(dropped),
        )
        return dropped

    def apply_event(self, event: KubeWatchEvent):
        """Update the cache from a watch event"""
        with self._lock:
            if event.type == KubeEventType.DELETED:
                self._remove(event.identity)
            else:
                self._upsert(event.resource)

    ## Reads ###################################################################

    def has_synced(self) -> bool:
        with self._lock:
            return self._expected_kinds.issubset(self._synced_kinds)

    def get(self, identity: ObjectIdentity) -> Optional[dict]:
        with self._lock:
            return self._objects.get(identity)

    def owned_by(self, key: ReconcileKey) -> List[dict]:
        with self._lock:
            return [
                self._objects[identity]
                for identity in sorted(self._owner_index.get(key, set()))
            ]

    def owners(self) -> List[ReconcileKey]:
        with self._lock:
            return sorted(key for key, idents in self._owner_index.items() if idents)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    ## Implementation Details ##################################################

    def _upsert(self, body: dict):
        identity = ObjectIdentity.from_body(body)
        previous = self._objects.get(identity)
        if previous is not None:
            self._unindex(identity, previous)
        self._objects[identity] = body
        owner = get_owner_key(body)
        if owner is not None:
            self._owner_index.setdefault(owner, set()).add(identity)

    def _remove(self, identity: ObjectIdentity):
        previous = self._objects.pop(identity, None)
        if previous is not None:
            self._unindex(identity, previous)

    def _unindex(self, identity: ObjectIdentity, body: dict):
        owner = get_owner_key(body)
        if owner is not None and owner in self._owner_index:
            self._owner_index[owner].discard(identity)
            if not self._owner_index[owner]:
                del self._owner_index[owner]


class CacheObserver:
    """Reads the owned objects of a Contour from the ObjectCache"""

    def __init__(self, cache: ObjectCache):
        self.cache = cache

    def observe(self, key: ReconcileKey) -> Dict[ObjectIdentity, KubeObject]:
        """Get every live object owned by the given Contour

        Args:
            key:  ReconcileKey
                The Contour whose objects should be observed

        Returns:
            observed:  Dict[ObjectIdentity, KubeObject]
                The owned objects of managed kinds. Empty if nothing is owned.
        """
        observed = {}
        for body in self.cache.owned_by(key):
            if body.get("kind") not in KIND_REGISTRY:
                continue
            obj = from_dict(copy.deepcopy(body))
            observed[obj.identity] = obj
        log.debug3("Observed %d objects for %s", len(observed), key)
        return observed

    def has_synced(self) -> bool:
        return self.cache.has_synced()

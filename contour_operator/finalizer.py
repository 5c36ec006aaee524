"""
Finalizer handling and ordered teardown of the objects owned by a Contour.

A Contour carries a finalizer marker for as long as it owns live objects. When
it is deleted, every owned object is deleted in reverse apply order and the
marker is only removed once no owned object is left.
"""

# Standard
from dataclasses import dataclass, field
from typing import List
import copy

# First Party
import alog

# Local
from . import constants
from .applier import ApplyError
from .cluster import ClusterClientBase
from .exceptions import OperatorError
from .model import (
    MANAGED_KINDS,
    Contour,
    KubeObject,
    ObjectIdentity,
    apply_order_key,
    from_dict,
    owner_selector,
)
from .observer import CacheObserver

log = alog.use_channel("FINLZ")

## Finalizer marker ############################################################


def add_finalizer(client: ClusterClientBase, contour: Contour) -> Contour:
    """Make sure the finalizer marker is present on the Contour

    Args:
        client:  ClusterClientBase
            The client used to update the Contour
        contour:  Contour
            The Contour as last read

    Returns:
        contour:  Contour
            The Contour after the update (or unchanged if already present)
    """
    if contour.has_finalizer():
        return contour
    log.debug("Adding finalizer to %s", contour.key)
    body = copy.deepcopy(contour.body)
    body["metadata"]["finalizers"] = contour.finalizers + [constants.CONTOUR_FINALIZER]
    return Contour(client.update(body))


def remove_finalizer(client: ClusterClientBase, contour: Contour) -> Contour:
    """Remove the finalizer marker from the Contour"""
    if not contour.has_finalizer():
        return contour
    log.debug("Removing finalizer from %s", contour.key)
    body = copy.deepcopy(contour.body)
    body["metadata"]["finalizers"] = [
        finalizer
        for finalizer in contour.finalizers
        if finalizer != constants.CONTOUR_FINALIZER
    ]
    return Contour(client.update(body))


## Teardown ####################################################################


@dataclass
class FinalizeResult:
    """Outcome of one teardown pass"""

    done: bool = False
    deleted: List[ObjectIdentity] = field(default_factory=list)
    remaining: int = 0
    errors: List[ApplyError] = field(default_factory=list)


class Finalizer:
    """Tears down the objects owned by a deleting Contour"""

    def __init__(self, client: ClusterClientBase, observer: CacheObserver):
        self.client = client
        self.observer = observer

    def finalize(self, contour: Contour) -> FinalizeResult:
        """Run one teardown pass. Idempotent: calling it again after a crash
        picks up where the last pass stopped.

        Args:
            contour:  Contour
                A Contour with a deletionTimestamp

        Returns:
            result:  FinalizeResult
                done is True once the marker has been removed
        """
        result = FinalizeResult()
        if not contour.has_finalizer():
            result.done = True
            return result

        owned = list(self.observer.observe(contour.key).values())
        if not owned:
            # The cache may lag behind recent creates, so confirm against the
            # cluster before letting the Contour go
            owned = self._list_owned(contour)

        if owned:
            result.remaining = len(owned)
            self._delete_all(contour, owned, result)
            log.info(
                "Waiting on %d owned objects before finalizing %s",
                result.remaining,
                contour.key,
            )
            return result

        remove_finalizer(self.client, contour)
        log.info("Finalized %s", contour.key)
        result.done = True
        return result

    ## Implementation Details ##################################################

    def _delete_all(self, contour: Contour, owned: List[KubeObject], result: FinalizeResult):
        for obj in sorted(owned, key=apply_order_key, reverse=True):
            if not obj.is_owned_by(contour.key):
                continue
            if obj.deletion_timestamp:
                log.debug2("%s is already being deleted", obj.identity)
                continue
            try:
                if self.client.delete_object(obj):
                    log.info("Deleted %s", obj.identity)
                    result.deleted.append(obj.identity)
            except OperatorError as err:
                log.warning("Failed to delete %s: %s", obj.identity, err)
                result.errors.append(ApplyError.from_exception(obj.identity, err))

    def _list_owned(self, contour: Contour) -> List[KubeObject]:
        selector = owner_selector(contour.key)
        owned = []
        for kind_class in MANAGED_KINDS:
            listing = self.client.list(
                kind_class.API_VERSION, kind_class.KIND, label_selector=selector
            )
            owned.extend(from_dict(item) for item in listing.items)
        return owned

"""
Identity types shared by every component: the identity of a single cluster
object, the key of a Contour being reconciled, and the owner labels that link
the two.
"""

# Standard
from dataclasses import dataclass
from typing import Dict, Optional

# Local
from .. import constants

## ObjectIdentity ##############################################################


@dataclass(frozen=True, order=True)
class ObjectIdentity:
    """Unique identity of a cluster object. Cluster scoped objects use an empty
    namespace.
    """

    api_version: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_body(cls, body: dict) -> "ObjectIdentity":
        """Build the identity of a raw object dict"""
        metadata = body.get("metadata", {})
        return cls(
            api_version=body.get("apiVersion", ""),
            kind=body.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name", ""),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


## ReconcileKey ################################################################


@dataclass(frozen=True, order=True)
class ReconcileKey:
    """The (namespace, name) of a Contour. All work for one Contour is keyed by
    this value.
    """

    namespace: str
    name: str

    @classmethod
    def from_body(cls, body: dict) -> "ReconcileKey":
        metadata = body.get("metadata", {})
        return cls(namespace=metadata.get("namespace", ""), name=metadata.get("name", ""))

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


## Owner Labels ################################################################


def owner_labels(key: ReconcileKey) -> Dict[str, str]:
    """The labels placed on every object owned by the given Contour"""
    return {
        constants.OWNER_NAME_LABEL: key.name,
        constants.OWNER_NS_LABEL: key.namespace,
    }


def owner_selector(key: ReconcileKey) -> str:
    """Label selector string that matches the objects owned by a Contour"""
    return ",".join(f"{k}={v}" for k, v in sorted(owner_labels(key).items()))


def get_owner_key(body: dict) -> Optional[ReconcileKey]:
    """Read the owning Contour from an object's owner labels

    Args:
        body:  dict
            The raw object

    Returns:
        key:  Optional[ReconcileKey]
            The owning Contour's key, or None if the object is not owned
    """
    labels = (body.get("metadata") or {}).get("labels") or {}
    name = labels.get(constants.OWNER_NAME_LABEL)
    namespace = labels.get(constants.OWNER_NS_LABEL)
    if not name or not namespace:
        return None
    return ReconcileKey(namespace=namespace, name=name)


def make_owner_reference(owner: dict) -> dict:
    """Build a metadata.ownerReferences entry pointing at the owner. This is only
    valid for objects in the owner's own namespace.

    NOTE: controller is not set so that objects can still be adopted by other
        controllers that use ownership to gate their own actions
    """
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner.get("apiVersion", constants.CONTOUR_API_VERSION),
        "kind": owner.get("kind", constants.CONTOUR_KIND),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "blockOwnerDeletion": True,
    }

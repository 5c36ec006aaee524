"""
The closed set of subordinate object kinds the operator manages. Every kind
shares the KubeObject accessor interface and declares its apply tier, whether
it is namespaced, and whether it can be updated in place.
"""

# Standard
from typing import Any, Dict, List, Optional, Type
import copy
import json

# First Party
import alog

# Local
from .. import constants
from .identity import ObjectIdentity, ReconcileKey, get_owner_key

log = alog.use_channel("MODEL")

# Metadata fields that the API server owns and that never take part in diffing
SERVER_MANAGED_METADATA = [
    "resourceVersion",
    "generation",
    "uid",
    "creationTimestamp",
    "managedFields",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
]

## Base ########################################################################


class KubeObject:
    """Typed wrapper around a raw object dict"""

    KIND: str = None
    API_VERSION: str = None
    NAMESPACED: bool = True
    # Objects are applied in ascending tier order and deleted in descending
    # tier order
    APPLY_TIER: int = 100
    # Immutable kinds are replaced (delete then create) instead of updated
    IMMUTABLE: bool = False
    # Workloads report readiness
    IS_WORKLOAD: bool = False

    def __init__(self, body: dict):
        self._body = body
        self._body.setdefault("apiVersion", self.API_VERSION)
        self._body.setdefault("kind", self.KIND)
        self._body.setdefault("metadata", {})

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.identity}>"

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, KubeObject) and self._body == other._body

    ## Accessors ###############################################################

    @property
    def body(self) -> dict:
        return self._body

    @property
    def metadata(self) -> dict:
        return self._body["metadata"]

    @property
    def identity(self) -> ObjectIdentity:
        return ObjectIdentity.from_body(self._body)

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def generation(self) -> Optional[int]:
        return self.metadata.get("generation")

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def spec(self) -> dict:
        return self._body.get("spec") or {}

    @property
    def status(self) -> dict:
        return self._body.get("status") or {}

    @property
    def owner_key(self) -> Optional[ReconcileKey]:
        return get_owner_key(self._body)

    def is_owned_by(self, key: ReconcileKey) -> bool:
        """Whether this object carries the owner labels of the given Contour"""
        return self.owner_key == key

    ## Diffing #################################################################

    def managed_projection(self) -> dict:
        """The operator-managed view of this object used for diffing: status and
        server managed metadata removed, empty values pruned
        """
        body = copy.deepcopy(self._body)
        body.pop("status", None)
        metadata = body.get("metadata", {})
        for field in SERVER_MANAGED_METADATA:
            metadata.pop(field, None)
        (metadata.get("annotations") or {}).pop(constants.LAST_APPLIED_ANNOTATION, None)
        return _prune_empty(body)

    @property
    def last_applied(self) -> dict:
        """The managed projection recorded the last time the operator wrote
        this object, or an empty dict if there is none
        """
        raw = self.annotations.get(constants.LAST_APPLIED_ANNOTATION)
        if not raw:
            return {}
        try:
            recorded = json.loads(raw)
        except ValueError:
            log.warning("Ignoring unreadable last applied state on %s", self.identity)
            return {}
        return recorded if isinstance(recorded, dict) else {}

    def applied_body(self) -> dict:
        """A copy of the body to write, annotated with its managed projection"""
        body = copy.deepcopy(self._body)
        annotations = body["metadata"].setdefault("annotations", {})
        annotations[constants.LAST_APPLIED_ANNOTATION] = json.dumps(
            self.managed_projection(), sort_keys=True, separators=(",", ":")
        )
        return body

    def project_onto(self, desired: "KubeObject") -> dict:
        """Project this (live) object onto the key structure of the desired
        object together with every key the operator wrote last time. Server
        defaults and fields set by other actors do not count as drift, while a
        field the operator set before and no longer renders does.
        """
        template = _union_keys(desired.managed_projection(), self.last_applied)
        return _prune_empty(_project(self.managed_projection(), template))

    def prepare_update(self, live: "KubeObject") -> dict:
        """Build the body of an update that sets this desired object over the
        given live object, carrying the live resourceVersion for optimistic
        concurrency
        """
        body = self.applied_body()
        body["metadata"]["resourceVersion"] = live.resource_version
        previous_metadata = live.last_applied.get("metadata", {})
        # Keep labels/annotations set by other actors, drop the ones this
        # operator set before and no longer renders
        for field in ["labels", "annotations"]:
            desired_vals = body["metadata"].get(field) or {}
            stale = set(previous_metadata.get(field) or {}) - set(desired_vals)
            merged = {
                key: val
                for key, val in (live.metadata.get(field) or {}).items()
                if key not in stale
            }
            merged.update(desired_vals)
            if merged:
                body["metadata"][field] = merged
            else:
                body["metadata"].pop(field, None)
        return body


## Kinds #######################################################################


class Namespace(KubeObject):
    KIND = "Namespace"
    API_VERSION = "v1"
    NAMESPACED = False
    APPLY_TIER = 0


class ServiceAccount(KubeObject):
    KIND = "ServiceAccount"
    API_VERSION = "v1"
    APPLY_TIER = 1


class ClusterRole(KubeObject):
    KIND = "ClusterRole"
    API_VERSION = "rbac.authorization.k8s.io/v1"
    NAMESPACED = False
    APPLY_TIER = 1


class Role(KubeObject):
    KIND = "Role"
    API_VERSION = "rbac.authorization.k8s.io/v1"
    APPLY_TIER = 1


class ClusterRoleBinding(KubeObject):
    KIND = "ClusterRoleBinding"
    API_VERSION = "rbac.authorization.k8s.io/v1"
    NAMESPACED = False
    APPLY_TIER = 2


class RoleBinding(KubeObject):
    KIND = "RoleBinding"
    API_VERSION = "rbac.authorization.k8s.io/v1"
    APPLY_TIER = 2


class ConfigMap(KubeObject):
    KIND = "ConfigMap"
    API_VERSION = "v1"
    APPLY_TIER = 3


class Job(KubeObject):
    """The pod template of a Job cannot be changed after creation"""

    KIND = "Job"
    API_VERSION = "batch/v1"
    APPLY_TIER = 4
    IMMUTABLE = True


class Deployment(KubeObject):
    KIND = "Deployment"
    API_VERSION = "apps/v1"
    APPLY_TIER = 5
    IS_WORKLOAD = True


class DaemonSet(KubeObject):
    KIND = "DaemonSet"
    API_VERSION = "apps/v1"
    APPLY_TIER = 5
    IS_WORKLOAD = True


class Service(KubeObject):
    KIND = "Service"
    API_VERSION = "v1"
    APPLY_TIER = 6

    def prepare_update(self, live: KubeObject) -> dict:
        """Services carry server assigned fields (clusterIP, node ports) that
        must survive an update
        """
        body = super().prepare_update(live)
        live_spec = live.spec
        spec = body.setdefault("spec", {})
        for field in ["clusterIP", "clusterIPs"]:
            if field in live_spec and field not in spec:
                spec[field] = live_spec[field]
        if spec.get("type") in ["NodePort", "LoadBalancer"]:
            live_node_ports = {
                port.get("name"): port.get("nodePort")
                for port in live_spec.get("ports", [])
                if port.get("nodePort")
            }
            for port in spec.get("ports", []):
                if "nodePort" not in port and port.get("name") in live_node_ports:
                    port["nodePort"] = live_node_ports[port["name"]]
        return body


# All managed kinds, keyed by kind name
KIND_REGISTRY: Dict[str, Type[KubeObject]] = {
    kind_class.KIND: kind_class
    for kind_class in [
        Namespace,
        ServiceAccount,
        ClusterRole,
        Role,
        ClusterRoleBinding,
        RoleBinding,
        ConfigMap,
        Job,
        Deployment,
        DaemonSet,
        Service,
    ]
}

MANAGED_KINDS: List[Type[KubeObject]] = sorted(
    KIND_REGISTRY.values(), key=lambda kind_class: kind_class.APPLY_TIER
)


def from_dict(body: dict) -> KubeObject:
    """Wrap a raw object dict in its typed KubeObject subclass

    Args:
        body:  dict
            The raw object. Its kind must be one of the managed kinds.

    Returns:
        obj:  KubeObject
            The typed wrapper sharing the given dict
    """
    kind_class = KIND_REGISTRY.get(body.get("kind"))
    if kind_class is None:
        raise ValueError(f"Unmanaged kind: {body.get('kind')}")
    return kind_class(body)


def apply_order_key(obj: KubeObject):
    """Sort key giving the dependency order in which objects are applied"""
    return (obj.APPLY_TIER, obj.identity)


## Implementation Details ######################################################


def _project(live: Any, desired: Any) -> Any:
    """Recursively keep only the parts of live that desired also specifies"""
    if isinstance(desired, dict) and isinstance(live, dict):
        return {
            key: _project(live[key], desired_val)
            for key, desired_val in desired.items()
            if key in live
        }
    if (
        isinstance(desired, list)
        and isinstance(live, list)
        and len(desired) == len(live)
    ):
        return [
            _project(live_val, desired_val)
            for live_val, desired_val in zip(live, desired)
        ]
    return live


def _union_keys(desired: Any, previous: Any) -> Any:
    """Overlay desired on previous so that the result has the keys of both.
    Lists are only combined element-wise when their lengths match.
    """
    if isinstance(desired, dict) and isinstance(previous, dict):
        merged = dict(previous)
        for key, desired_val in desired.items():
            merged[key] = _union_keys(desired_val, previous.get(key))
        return merged
    if (
        isinstance(desired, list)
        and isinstance(previous, list)
        and len(desired) == len(previous)
    ):
        return [
            _union_keys(desired_val, previous_val)
            for desired_val, previous_val in zip(desired, previous)
        ]
    return desired


def _prune_empty(value: Any) -> Any:
    """Remove None values and empty containers so that an omitted field and an
    explicitly empty one compare equal
    """
    if isinstance(value, dict):
        pruned = {}
        for key, val in value.items():
            val = _prune_empty(val)
            if val is None or val == {} or val == []:
                continue
            pruned[key] = val
        return pruned
    if isinstance(value, list):
        return [_prune_empty(val) for val in value]
    return value

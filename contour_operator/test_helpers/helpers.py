"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple
import copy
import os
import threading
import time

# First Party
import aconfig
import alog

# Local
from contour_operator import constants
from contour_operator.cluster import DryRunClusterClient
from contour_operator.config import library_config as config_detail_dict
from contour_operator.exceptions import OperatorError
from contour_operator.model import (
    MANAGED_KINDS,
    ObjectIdentity,
    ReconcileKey,
    from_dict,
    owner_labels,
)
from contour_operator.observer import ObjectCache

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "contour-sample"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
TEST_KEY = ReconcileKey(namespace=TEST_NAMESPACE, name=TEST_INSTANCE_NAME)


def setup_contour(
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    generation=1,
    uid=TEST_INSTANCE_UID,
    **kwargs,
) -> dict:
    """Build a raw Contour manifest"""
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", constants.CONTOUR_KIND)
    cr_dict.setdefault("apiVersion", constants.CONTOUR_API_VERSION)
    metadata = cr_dict.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    if uid:
        metadata.setdefault("uid", uid)
    if generation is not None:
        metadata.setdefault("generation", generation)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    return cr_dict


def owned_object(
    kind: str,
    name: str,
    namespace: Optional[str] = None,
    key: ReconcileKey = TEST_KEY,
    api_version: Optional[str] = None,
    **body,
) -> dict:
    """Build a raw object carrying the owner labels of the given key"""
    api_versions = {
        "Deployment": "apps/v1",
        "DaemonSet": "apps/v1",
        "Job": "batch/v1",
        "ClusterRole": "rbac.authorization.k8s.io/v1",
        "ClusterRoleBinding": "rbac.authorization.k8s.io/v1",
        "Role": "rbac.authorization.k8s.io/v1",
        "RoleBinding": "rbac.authorization.k8s.io/v1",
    }
    obj = copy.deepcopy(body)
    obj["kind"] = kind
    obj["apiVersion"] = api_version or api_versions.get(kind, "v1")
    metadata = obj.setdefault("metadata", {})
    metadata["name"] = name
    if namespace:
        metadata["namespace"] = namespace
    metadata.setdefault("labels", {}).update(owner_labels(key))
    return obj


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion. Dict values replace whole config sections.
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        if isinstance(val, dict):
            base = copy.deepcopy(dict(old_vals.get(key) or {}))
            base.update(val)
            val = aconfig.Config(base, override_env_vars=False)
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


class MockClusterClient(DryRunClusterClient):
    """DryRunClusterClient that records every mutation and can be told to
    fail upcoming calls
    """

    MUTATING_VERBS = ["create", "update", "update_status", "delete"]

    def __init__(self, resources: Optional[List[dict]] = None):
        self._fault_lock = threading.Lock()
        self._faults: List[Tuple[str, Optional[str], OperatorError, int]] = []
        self.mutations: List[Tuple[str, ObjectIdentity]] = []
        self.calls: List[Tuple[str, str]] = []
        super().__init__(resources=resources)
        # Pre-populated resources are not recorded
        self.mutations.clear()
        self.calls.clear()

    ## Fault injection #########################################################

    def fail_next(
        self,
        verb: str,
        error: OperatorError,
        kind: Optional[str] = None,
        count: int = 1,
    ):
        """Make the next `count` calls of verb (optionally only for a kind)
        raise the given error
        """
        with self._fault_lock:
            self._faults.append((verb, kind, error, count))

    def _maybe_fail(self, verb: str, kind: str):
        with self._fault_lock:
            for idx, (fault_verb, fault_kind, error, count) in enumerate(self._faults):
                if fault_verb == verb and fault_kind in [None, kind]:
                    if count <= 1:
                        self._faults.pop(idx)
                    else:
                        self._faults[idx] = (fault_verb, fault_kind, error, count - 1)
                    log.debug2("Injecting %s into %s of %s", error, verb, kind)
                    raise error

    ## Mutation recording ######################################################

    def mutations_of(self, verb: Optional[str] = None) -> List[ObjectIdentity]:
        return [
            identity for mut_verb, identity in self.mutations if verb in [None, mut_verb]
        ]

    def reset_records(self):
        self.mutations.clear()
        self.calls.clear()

    ## Interface ###############################################################

    def get(self, api_version, kind, name, namespace=None):
        self.calls.append(("get", kind))
        self._maybe_fail("get", kind)
        return super().get(api_version, kind, name, namespace)

    def list(self, api_version, kind, namespace=None, label_selector=None):
        self.calls.append(("list", kind))
        self._maybe_fail("list", kind)
        return super().list(api_version, kind, namespace, label_selector)

    def create(self, body):
        kind = body.get("kind")
        self.calls.append(("create", kind))
        self._maybe_fail("create", kind)
        result = super().create(body)
        self.mutations.append(("create", ObjectIdentity.from_body(result)))
        return result

    def update(self, body):
        kind = body.get("kind")
        self.calls.append(("update", kind))
        self._maybe_fail("update", kind)
        result = super().update(body)
        self.mutations.append(("update", ObjectIdentity.from_body(result)))
        return result

    def update_status(self, body):
        kind = body.get("kind")
        self.calls.append(("update_status", kind))
        self._maybe_fail("update_status", kind)
        result = super().update_status(body)
        self.mutations.append(("update_status", ObjectIdentity.from_body(result)))
        return result

    def delete(self, api_version, kind, name, namespace=None, uid=None):
        self.calls.append(("delete", kind))
        self._maybe_fail("delete", kind)
        deleted = super().delete(api_version, kind, name, namespace, uid)
        if deleted:
            self.mutations.append(
                ("delete", ObjectIdentity(api_version, kind, namespace or "", name))
            )
        return deleted


## Cache helpers ###############################################################


def sync_cache(cache: ObjectCache, client: DryRunClusterClient, kinds=None) -> ObjectCache:
    """Fill the cache with a fresh list of every managed kind, the way the
    watch threads do on startup
    """
    kind_classes = kinds or MANAGED_KINDS
    cache.expect_kinds(kind_class.KIND for kind_class in kind_classes)
    for kind_class in kind_classes:
        listing = client.list(kind_class.API_VERSION, kind_class.KIND)
        cache.replace(kind_class.KIND, listing.items)
    return cache


## Readiness simulation ########################################################


def set_workload_ready(client: DryRunClusterClient, identity: ObjectIdentity) -> dict:
    """Write a status that makes the given Deployment or DaemonSet ready"""
    body = client.get_identity(identity)
    assert body is not None, f"{identity} does not exist"
    generation = body["metadata"].get("generation", 1)
    if identity.kind == "Deployment":
        replicas = body.get("spec", {}).get("replicas", 1)
        body["status"] = {
            "observedGeneration": generation,
            "replicas": replicas,
            "readyReplicas": replicas,
            "updatedReplicas": replicas,
            "availableReplicas": replicas,
            "conditions": [
                {
                    "type": "Available",
                    "status": "True",
                    "lastTransitionTime": "2021-01-01T00:00:00Z",
                }
            ],
        }
    elif identity.kind == "DaemonSet":
        body["status"] = {
            "observedGeneration": generation,
            "desiredNumberScheduled": 3,
            "currentNumberScheduled": 3,
            "numberReady": 3,
            "numberAvailable": 3,
            "updatedNumberScheduled": 3,
        }
    else:
        raise ValueError(f"{identity.kind} is not a workload")
    return client.update_status(body)


def set_all_workloads_ready(client: DryRunClusterClient, namespace: str):
    """Make every Deployment and DaemonSet in the namespace ready"""
    for kind, api_version in [("Deployment", "apps/v1"), ("DaemonSet", "apps/v1")]:
        for item in client.list(api_version, kind, namespace=namespace).items:
            set_workload_ready(client, from_dict(item).identity)


## Waiting #####################################################################


def wait_for(condition, timeout: float = 5.0, poll: float = 0.02) -> bool:
    """Poll condition until it returns truthy or the timeout elapses"""
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if condition():
            return True
        time.sleep(poll)
    return bool(condition())


def current_conditions(client: DryRunClusterClient, key: ReconcileKey = TEST_KEY) -> Dict[str, dict]:
    """The persisted conditions of a Contour, by type"""
    body = client.get(
        constants.CONTOUR_API_VERSION, constants.CONTOUR_KIND, key.name, key.namespace
    )
    if body is None:
        return {}
    return {
        cond["type"]: cond for cond in (body.get("status") or {}).get("conditions", [])
    }

"""
Readiness checks for the workloads the operator manages. Each verifier takes
the live state of an object and reports whether it has reached its readiness
threshold for its current generation.
"""

# Standard
from datetime import datetime
from typing import Callable, Dict, List, Optional

# Third Party
import dateutil.parser

# First Party
import alog

# Local
from .model import KubeObject

log = alog.use_channel("READY")

AVAILABLE_CONDITION_KEY = "Available"
COMPLETE_CONDITION_KEY = "Complete"
DEFAULT_TIMESTAMP_KEY = "lastTransitionTime"

## Public ######################################################################


def verify_workload(obj: KubeObject) -> bool:
    """Verify that a live object is ready. Objects without a readiness notion
    are always ready.

    Args:
        obj:  KubeObject
            The live object to check

    Returns:
        ready:  bool
            True if the object has reached its readiness threshold
    """
    verifier = _resource_verifiers.get(obj.KIND)
    if verifier is None:
        return True
    ready = verifier(obj.body)
    log.debug2("%s ready: %s", obj.identity, ready)
    return ready


def available_count(obj: Optional[KubeObject]) -> int:
    """Number of available pods reported by a workload"""
    if obj is None:
        return 0
    status = obj.status
    if obj.KIND == "DaemonSet":
        return status.get("numberAvailable", 0) or 0
    return status.get("availableReplicas", 0) or 0


def verify_deployment(object_state: dict) -> bool:
    """Verify that the desired replicas of the current generation are ready"""
    if not _generation_observed(object_state):
        return False
    desired = object_state.get("spec", {}).get("replicas", 1)
    obj_status = object_state.get("status", {})
    if (obj_status.get("readyReplicas") or 0) < desired:
        log.debug2("Deployment has %s/%d ready", obj_status.get("readyReplicas"), desired)
        return False
    if (obj_status.get("updatedReplicas") or 0) < desired:
        return False
    # A deployment scaled to zero reports no Available condition
    if desired == 0:
        return True
    return _verify_condition(object_state, AVAILABLE_CONDITION_KEY, True)


def verify_daemonset(object_state: dict) -> bool:
    """Verify that every scheduled pod of the current generation is available"""
    if not _generation_observed(object_state):
        return False
    obj_status = object_state.get("status", {})
    scheduled = obj_status.get("desiredNumberScheduled") or 0
    if scheduled <= 0:
        log.debug2("DaemonSet has no scheduled pods. Not ready.")
        return False
    return (obj_status.get("numberAvailable") or 0) >= scheduled and (
        obj_status.get("updatedNumberScheduled") or 0
    ) >= scheduled


def verify_job(object_state: dict) -> bool:
    """Verify that a job has completed"""
    return _verify_condition(object_state, COMPLETE_CONDITION_KEY, True)


_resource_verifiers: Dict[str, Callable[[dict], bool]] = {
    "Deployment": verify_deployment,
    "DaemonSet": verify_daemonset,
    "Job": verify_job,
}

## Helpers #####################################################################


def _generation_observed(object_state: dict) -> bool:
    generation = object_state.get("metadata", {}).get("generation")
    observed = object_state.get("status", {}).get("observedGeneration")
    if generation is None:
        return True
    return observed is not None and observed >= generation


def _verify_condition(
    object_state: dict,
    type_val: str,
    expected_status: bool,
    timestamp_key: str = DEFAULT_TIMESTAMP_KEY,
) -> bool:
    """Check that the newest condition of the given type has the expected
    status
    """
    conditions = [
        cond
        for cond in object_state.get("status", {}).get("conditions", []) or []
        if cond.get("type") == type_val
    ]
    if not conditions:
        log.debug2("No %s conditions. Not verified", type_val)
        return False
    latest_cond = _sort_conditions_by_date(conditions, timestamp_key)[0]
    log.debug3("Latest '%s' condition: %s", type_val, latest_cond)
    return str(latest_cond.get("status")) == str(expected_status)


def _parse_condition_timestamp(condition: dict, timestamp_key: str) -> datetime:
    timestamp = condition.get(timestamp_key)
    if isinstance(timestamp, str):
        return dateutil.parser.parse(timestamp).replace(tzinfo=None)
    if isinstance(timestamp, datetime):
        return timestamp.replace(tzinfo=None)
    log.debug3("Found condition with no valid timestamp. Using epoch")
    return datetime.fromtimestamp(0)


def _sort_conditions_by_date(conditions: List[dict], timestamp_key: str) -> List[dict]:
    """Newest conditions first"""
    return sorted(
        conditions,
        key=lambda cond: _parse_condition_timestamp(cond, timestamp_key),
        reverse=True,
    )

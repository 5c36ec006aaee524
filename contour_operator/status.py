"""
This module holds the functionality used to represent the status of a Contour

The operator maintains the following conditions, always in this order:

* Available: True if every workload meets its readiness threshold
* Progressing: True while changes are being rolled out or workloads are not
  yet ready
* ReconcileError: True if the last reconcile hit errors. Carries the first
  error's reason and message.

Alongside the conditions, the status holds:
{
    "observedGeneration": <generation the conditions describe>,
    "availableContours": <available contour replicas>,
    "availableEnvoys": <available envoy pods>,
}

observedGeneration never decreases, each condition's lastTransitionTime only
moves when its status flips, and the status is only written back when it
changed meaningfully.
"""

# Standard
from enum import Enum
from typing import Dict, List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants
from .applier import ApplyError
from .cluster import ClusterClientBase
from .model import Contour, KubeObject, ObjectIdentity
from .readiness import available_count, verify_workload
from .render import DesiredObjectSet
from .utils import now_timestamp

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class AvailableReason(Enum):
    """Reason constants for the Available condition"""

    # Every workload is ready
    AVAILABLE = "ContourAvailable"

    # At least one workload has not reached its readiness threshold
    UNAVAILABLE = "ContourUnavailable"


class ProgressingReason(Enum):
    """Reason constants for the Progressing condition"""

    # Objects were created or updated during this reconcile
    APPLYING = "ApplyingChanges"

    # Objects are up to date but workloads are still rolling out
    ROLLING_OUT = "RollingOut"

    # Everything is applied and ready
    STABLE = "Stable"


class ReconcileErrorReason(Enum):
    """Reason constants for the ReconcileError condition when no error"""

    NO_ERRORS = "NoErrors"

    # The retry ceiling was reached
    RETRIES_EXHAUSTED = "RetriesExhausted"


def make_condition(
    type_name: str,
    status: Optional[bool],
    reason: str,
    message: str,
    observed_generation: int,
    timestamp: Optional[str] = None,
) -> dict:
    """Build a single condition dict

    Args:
        type_name:  str
            The condition type
        status:  Optional[bool]
            True, False, or None for Unknown
        reason:  str
            CamelCase reason
        message:  str
            Human readable message
        observed_generation:  int
            The Contour generation this condition describes
        timestamp:  Optional[str]
            The transition time. Defaults to now.

    Returns:
        condition:  dict
            The condition dict
    """
    return {
        "type": type_name,
        "status": "Unknown" if status is None else str(bool(status)),
        "reason": reason,
        "message": message,
        "observedGeneration": observed_generation,
        TIMESTAMP_KEY: timestamp or now_timestamp(),
    }


def aggregate(
    contour: Contour,
    desired: Optional[DesiredObjectSet],
    observed: Dict[ObjectIdentity, KubeObject],
    errors: List[ApplyError],
    changed: bool = False,
) -> List[dict]:
    """Collapse workload health and the apply outcome into ordered conditions.
    This never raises.

    Args:
        contour:  Contour
            The Contour being reported on
        desired:  Optional[DesiredObjectSet]
            The rendered objects, None if rendering did not happen
        observed:  Dict[ObjectIdentity, KubeObject]
            The freshest known live objects
        errors:  List[ApplyError]
            Errors from this reconcile
        changed:  bool
            Whether any object was mutated during this reconcile

    Returns:
        conditions:  List[dict]
            Available, Progressing and ReconcileError conditions
    """
    generation = contour.generation
    try:
        workloads = desired.workloads() if desired is not None else []
        not_ready = []
        for workload in workloads:
            live = observed.get(workload.identity)
            if live is None or not verify_workload(live):
                not_ready.append(str(workload.identity))

        if desired is None:
            available = make_condition(
                constants.AVAILABLE_CONDITION,
                None,
                AvailableReason.UNAVAILABLE.value,
                "Desired state could not be rendered",
                generation,
            )
        elif not_ready:
            available = make_condition(
                constants.AVAILABLE_CONDITION,
                False,
                AvailableReason.UNAVAILABLE.value,
                "Not ready: " + ", ".join(not_ready),
                generation,
            )
        else:
            available = make_condition(
                constants.AVAILABLE_CONDITION,
                True,
                AvailableReason.AVAILABLE.value,
                "All workloads are available",
                generation,
            )

        if changed:
            progressing = make_condition(
                constants.PROGRESSING_CONDITION,
                True,
                ProgressingReason.APPLYING.value,
                "Applied changes to owned objects",
                generation,
            )
        elif not_ready:
            progressing = make_condition(
                constants.PROGRESSING_CONDITION,
                True,
                ProgressingReason.ROLLING_OUT.value,
                "Waiting for workloads to become ready",
                generation,
            )
        else:
            progressing = make_condition(
                constants.PROGRESSING_CONDITION,
                False,
                ProgressingReason.STABLE.value,
                "All owned objects are up to date",
                generation,
            )

        return [available, progressing, make_error_condition(errors, generation)]

    except Exception as err:  # pylint: disable=broad-exception-caught
        log.warning("Failed to aggregate status for %s: %s", contour.key, err)
        return [
            make_condition(constants.AVAILABLE_CONDITION, None, "Unknown", "", generation),
            make_condition(constants.PROGRESSING_CONDITION, None, "Unknown", "", generation),
            make_condition(
                constants.RECONCILE_ERROR_CONDITION,
                True,
                "StatusAggregationFailed",
                str(err),
                generation,
            ),
        ]


def make_error_condition(errors: List[ApplyError], generation: int) -> dict:
    """The ReconcileError condition for a list of errors"""
    if errors:
        first = errors[0]
        message = first.message
        if len(errors) > 1:
            message = f"{message} (and {len(errors) - 1} more)"
        return make_condition(
            constants.RECONCILE_ERROR_CONDITION, True, first.reason, message, generation
        )
    return make_condition(
        constants.RECONCILE_ERROR_CONDITION,
        False,
        ReconcileErrorReason.NO_ERRORS.value,
        "",
        generation,
    )


def merge_conditions(
    current: List[dict],
    new: List[dict],
    timestamp: Optional[str] = None,
) -> List[dict]:
    """Merge newly computed conditions into the persisted ones

    * One condition per type
    * lastTransitionTime only changes when status changes
    * A condition for an older generation never replaces a newer one

    Args:
        current:  List[dict]
            The persisted conditions
        new:  List[dict]
            The freshly computed conditions
        timestamp:  Optional[str]
            Transition time for flipped conditions. Defaults to now.

    Returns:
        merged:  List[dict]
            Managed conditions in their fixed order followed by any other
            condition types found in current
    """
    timestamp = timestamp or now_timestamp()
    by_type: Dict[str, dict] = {}
    for cond in current or []:
        type_name = cond.get("type")
        previous = by_type.get(type_name)
        if previous is None or _generation_of(cond) >= _generation_of(previous):
            by_type[type_name] = copy.deepcopy(cond)

    for cond in new:
        cond = copy.deepcopy(cond)
        type_name = cond["type"]
        previous = by_type.get(type_name)
        if previous is not None:
            if _generation_of(previous) > _generation_of(cond):
                log.debug2("Keeping newer %s condition", type_name)
                continue
            if previous.get("status") == cond.get("status") and previous.get(
                TIMESTAMP_KEY
            ):
                cond[TIMESTAMP_KEY] = previous[TIMESTAMP_KEY]
            else:
                cond[TIMESTAMP_KEY] = timestamp
        else:
            cond[TIMESTAMP_KEY] = timestamp
        by_type[type_name] = cond

    ordered = [by_type.pop(name) for name in constants.CONDITION_ORDER if name in by_type]
    return ordered + [
        by_type.pop(type_name)
        for type_name in [cond.get("type") for cond in current or []]
        if type_name in by_type
    ]


def build_status(
    contour: Contour,
    conditions: List[dict],
    observed: Dict[ObjectIdentity, KubeObject],
    desired: Optional[DesiredObjectSet] = None,
) -> dict:
    """Build the full status for a Contour from freshly computed conditions"""
    current = contour.status
    status = copy.deepcopy(current)
    status["conditions"] = merge_conditions(current.get("conditions", []), conditions)
    status["observedGeneration"] = max(
        current.get("observedGeneration") or 0, contour.generation
    )
    contours, envoys = 0, 0
    for workload in desired.workloads() if desired is not None else []:
        live = observed.get(workload.identity)
        if workload.KIND == "Deployment":
            contours = available_count(live)
        elif workload.KIND == "DaemonSet":
            envoys = available_count(live)
    status["availableContours"] = contours
    status["availableEnvoys"] = envoys
    return status


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current Contour
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def write_status(client: ClusterClientBase, contour: Contour, new_status: dict) -> bool:
    """Write the status back if it changed meaningfully

    Args:
        client:  ClusterClientBase
            The client used to write the status
        contour:  Contour
            The Contour as read at the start of the reconcile. Its
            resourceVersion guards the write.
        new_status:  dict
            The proposed status

    Returns:
        written:  bool
            True if a write was issued
    """
    if not status_changed(contour.status, new_status):
        log.debug2("Status has not changed for %s. No update", contour.key)
        return False
    log.debug("Found meaningful change. Updating status for %s", contour.key)
    log.debug3("(current) %s != (updated) %s", contour.status, new_status)
    body = copy.deepcopy(contour.body)
    body["status"] = new_status
    client.update_status(body)
    return True


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status of a Contour

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in current_status.get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


## Implementation Details ######################################################


def _generation_of(cond: dict) -> int:
    return cond.get("observedGeneration") or 0

"""
Tests for the workload readiness checks
"""

# Third Party
import pytest

# Local
from contour_operator.model import ConfigMap, from_dict
from contour_operator.readiness import available_count, verify_workload
from contour_operator.test_helpers.helpers import configure_logging, owned_object

configure_logging()

## Helpers #####################################################################


def deployment(replicas=2, generation=1, **status):
    body = owned_object("Deployment", "contour", "ns", spec={"replicas": replicas})
    body["metadata"]["generation"] = generation
    body["status"] = status
    return from_dict(body)


def daemonset(generation=1, **status):
    body = owned_object("DaemonSet", "envoy", "ns")
    body["metadata"]["generation"] = generation
    body["status"] = status
    return from_dict(body)


def available(status="True", time="2021-01-01T00:00:00Z"):
    return {"type": "Available", "status": status, "lastTransitionTime": time}


## Deployment ##################################################################


def test_deployment_ready():
    """Make sure a fully rolled out deployment is ready"""
    obj = deployment(
        observedGeneration=1,
        readyReplicas=2,
        updatedReplicas=2,
        availableReplicas=2,
        conditions=[available()],
    )
    assert verify_workload(obj)
    assert available_count(obj) == 2


@pytest.mark.parametrize(
    "status",
    [
        {"observedGeneration": 0, "readyReplicas": 2, "updatedReplicas": 2},
        {"observedGeneration": 1, "readyReplicas": 1, "updatedReplicas": 2},
        {"observedGeneration": 1, "readyReplicas": 2, "updatedReplicas": 1},
        {"observedGeneration": 1, "readyReplicas": 2, "updatedReplicas": 2},
    ],
)
def test_deployment_not_ready(status):
    """Make sure stale, partial or unconditioned deployments are not ready"""
    status["conditions"] = [available()] if status["observedGeneration"] == 0 else []
    assert not verify_workload(deployment(**status))


def test_deployment_latest_condition_wins():
    """Make sure the newest Available condition decides"""
    obj = deployment(
        observedGeneration=1,
        readyReplicas=2,
        updatedReplicas=2,
        conditions=[
            available("True", "2021-01-01T00:00:00Z"),
            available("False", "2021-01-02T00:00:00Z"),
        ],
    )
    assert not verify_workload(obj)


def test_deployment_scaled_to_zero():
    """Make sure a zero replica deployment is ready once observed"""
    assert verify_workload(deployment(replicas=0, observedGeneration=1))


## DaemonSet ###################################################################


def test_daemonset_ready():
    """Make sure a daemonset with every scheduled pod available is ready"""
    obj = daemonset(
        observedGeneration=1,
        desiredNumberScheduled=3,
        numberAvailable=3,
        updatedNumberScheduled=3,
    )
    assert verify_workload(obj)
    assert available_count(obj) == 3


def test_daemonset_nothing_scheduled():
    """Make sure a daemonset with no scheduled pods is not ready"""
    assert not verify_workload(daemonset(observedGeneration=1, desiredNumberScheduled=0))


def test_daemonset_rolling():
    """Make sure a daemonset mid rollout is not ready"""
    obj = daemonset(
        observedGeneration=1,
        desiredNumberScheduled=3,
        numberAvailable=3,
        updatedNumberScheduled=1,
    )
    assert not verify_workload(obj)


## Other kinds #################################################################


def test_job_complete():
    """Make sure jobs are ready once complete"""
    body = owned_object("Job", "certgen", "ns")
    assert not verify_workload(from_dict(body))
    body["status"] = {"conditions": [{"type": "Complete", "status": "True"}]}
    assert verify_workload(from_dict(body))


def test_no_readiness_notion():
    """Make sure kinds without readiness are always ready"""
    assert verify_workload(ConfigMap(owned_object("ConfigMap", "c", "ns")))
    assert available_count(None) == 0

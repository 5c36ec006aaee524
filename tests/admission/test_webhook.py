"""
Tests for the admission webhook
"""

# Standard
from unittest import mock
import time

# Third Party
from fastapi.testclient import TestClient
import pytest

# Local
from contour_operator.admission import (
    AdmissionResult,
    admission_response,
    create_app,
    review,
)
from contour_operator.test_helpers.helpers import configure_logging, setup_contour

configure_logging()

## Helpers #####################################################################


def admission_review(operation="CREATE", spec=None, old_spec=None, uid="abc-123"):
    request = {
        "uid": uid,
        "operation": operation,
        "namespace": "test",
        "name": "contour-sample",
        "object": setup_contour(spec),
    }
    if old_spec is not None:
        request["oldObject"] = setup_contour(old_spec)
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": request,
    }


@pytest.fixture
def client():
    return TestClient(create_app(timeout_seconds=5))


## admission_response ##########################################################


def test_admission_response_allowed():
    assert admission_response("u", AdmissionResult(allowed=True)) == {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": {"uid": "u", "allowed": True},
    }


def test_admission_response_denied():
    resp = admission_response("u", AdmissionResult(allowed=False, reason="bad"))
    assert resp["response"]["allowed"] is False
    assert resp["response"]["status"] == {"code": 403, "message": "bad"}


## review ######################################################################


def test_review_passes_deletes():
    """Make sure deletes are always admitted, whatever the object"""
    request = admission_review("DELETE", {"replicas": -1})["request"]
    assert review(request).allowed


def test_review_update_checks_transition():
    """Make sure updates are validated against the old object"""
    request = admission_review(
        "UPDATE", {"namespace": {"name": "b"}}, old_spec={"namespace": {"name": "a"}}
    )["request"]
    result = review(request)
    assert not result.allowed
    assert "immutable" in result.reason


def test_review_create_ignores_old_object():
    """Make sure creates are not subject to transition rules"""
    request = admission_review(
        "CREATE", {"namespace": {"name": "b"}}, old_spec={"namespace": {"name": "a"}}
    )["request"]
    assert review(request).allowed


def test_review_timeout_denies():
    """Make sure a validation that runs out of time is denied"""

    def slow_validate(*_, **__):
        time.sleep(0.5)
        return AdmissionResult(allowed=True)

    with mock.patch("contour_operator.admission.webhook.validate", slow_validate):
        result = review(admission_review()["request"], timeout_seconds=0.05)
    assert not result.allowed
    assert result.reason == "validation timed out"


## HTTP ########################################################################


def test_webhook_allows_valid(client):
    resp = client.post("/validate", json=admission_review(spec={"replicas": 3}))
    assert resp.status_code == 200
    body = resp.json()
    assert body["kind"] == "AdmissionReview"
    assert body["response"] == {"uid": "abc-123", "allowed": True}


def test_webhook_rejects_negative_replicas(client):
    """Make sure a negative replica count is denied before it is persisted"""
    resp = client.post("/validate", json=admission_review(spec={"replicas": -1}))
    assert resp.status_code == 200
    response = resp.json()["response"]
    assert response["uid"] == "abc-123"
    assert response["allowed"] is False
    assert response["status"]["code"] == 403
    assert "spec.replicas: must not be negative" in response["status"]["message"]


def test_webhook_bad_requests(client):
    """Make sure malformed reviews get a 400"""
    assert client.post("/validate", content=b"not json").status_code == 400
    assert client.post("/validate", json={"kind": "AdmissionReview"}).status_code == 400
    assert client.post("/validate", json=["a"]).status_code == 400

"""
The validating admission webhook. Admission reviews for Contour resources are
answered with the verdict of the validator.
"""

# Standard
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

# Third Party
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# First Party
import alog

# Local
from .. import config
from .validator import AdmissionResult, validate

log = alog.use_channel("WHOOK")

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"

# Operations that are always admitted
_PASS_THROUGH_OPERATIONS = ["DELETE", "CONNECT"]


def admission_response(uid: str, result: AdmissionResult) -> dict:
    """Wrap a verdict in an AdmissionReview response"""
    response = {"uid": uid, "allowed": result.allowed}
    if not result.allowed:
        response["status"] = {"code": 403, "message": result.reason}
    return {
        "apiVersion": ADMISSION_API_VERSION,
        "kind": ADMISSION_KIND,
        "response": response,
    }


def review(request: dict, timeout_seconds: Optional[float] = None) -> AdmissionResult:
    """Evaluate the request part of an AdmissionReview

    Args:
        request:  dict
            The "request" object of the review
        timeout_seconds:  Optional[float]
            Upper bound on the time spent validating. Requests that run out of
            time are denied.

    Returns:
        result:  AdmissionResult
            The verdict
    """
    operation = request.get("operation", "")
    if operation in _PASS_THROUGH_OPERATIONS:
        return AdmissionResult(allowed=True)

    candidate = request.get("object") or {}
    previous = request.get("oldObject") if operation == "UPDATE" else None
    if timeout_seconds is None:
        timeout_seconds = config.webhook.timeout_seconds

    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(validate, candidate, previous)
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        log.warning("Validation of %s timed out", request.get("uid"))
        return AdmissionResult(allowed=False, reason="validation timed out")
    finally:
        executor.shutdown(wait=False)


def create_app(timeout_seconds: Optional[float] = None) -> FastAPI:
    """Build the webhook application"""
    app = FastAPI(title="Contour Operator Admission")

    @app.post("/validate")
    async def validate_contour(http_request: Request):
        try:
            body = await http_request.json()
        except ValueError:
            return JSONResponse({"detail": "request body is not JSON"}, status_code=400)

        request = body.get("request") if isinstance(body, dict) else None
        if not isinstance(request, dict):
            return JSONResponse(
                {"detail": "request body is not an AdmissionReview"}, status_code=400
            )

        uid = request.get("uid", "")
        result = review(request, timeout_seconds)
        log.debug(
            "Admission %s %s/%s: allowed=%s",
            request.get("operation"),
            request.get("namespace"),
            request.get("name"),
            result.allowed,
        )
        return admission_response(uid, result)

    return app

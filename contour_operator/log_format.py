"""
Custom logging formats that carry the identity of the Contour being reconciled
"""

# First Party
from alog import AlogJsonFormatter
import alog

log = alog.use_channel("LGFMT")


class OperatorJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identity of
    the resource being reconciled, the reconcile id and thread information.

    Records opt in by passing extra={"resource": <dict>, "reconcileId": <str>}
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "resourceVersion",
        "resourceName",
        "resourceNamespace",
        "reconcileKey",
        "reconcileId",
    ]

    def format(self, record):
        if resource := getattr(record, "resource", None):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.resourceVersion = metadata.get("resourceVersion")
            record.resourceName = metadata.get("name")
            record.resourceNamespace = metadata.get("namespace")
            record.reconcileKey = f"{metadata.get('namespace')}/{metadata.get('name')}"

        return super().format(record)


def log_extra(resource: dict, reconcile_id: str = None) -> dict:
    """Build the extra dict that attaches a resource to a log record"""
    extra = {"resource": resource}
    if reconcile_id:
        extra["reconcileId"] = reconcile_id
    return extra

"""
Prometheus metrics exported by the operator
"""

# Third Party
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# First Party
import alog

log = alog.use_channel("METRC")

RECONCILE_TOTAL = Counter(
    "contour_operator_reconcile_total",
    "Reconciles of Contour resources by result",
    ["result"],
)

RECONCILE_DURATION = Histogram(
    "contour_operator_reconcile_duration_seconds",
    "Time spent in a single reconcile",
)

WORK_QUEUE_DEPTH = Gauge(
    "contour_operator_workqueue_depth",
    "Number of keys waiting in the reconcile work queue",
)

API_REQUESTS = Counter(
    "contour_operator_api_requests_total",
    "Cluster API requests by verb and outcome",
    ["verb", "outcome"],
)

OWNED_OBJECTS = Gauge(
    "contour_operator_owned_objects",
    "Number of live objects owned by a Contour",
    ["namespace", "name"],
)


def start_metrics_server(address: str, port: int):
    """Serve the metrics endpoint on a background thread"""
    log.info("Serving metrics on %s:%d", address, port)
    start_http_server(port, addr=address)

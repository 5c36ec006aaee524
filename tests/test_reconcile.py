"""
Tests for the Reconciler pipeline
"""

# Standard
from unittest import mock

# Local
from contour_operator import constants
from contour_operator.exceptions import (
    ClusterError,
    ConflictError,
    InvariantError,
    UnavailableError,
)
from contour_operator.model import ObjectIdentity
from contour_operator.observer import CacheObserver, ObjectCache
from contour_operator.reconcile import CACHE_SYNC_DELAY, Reconciler, ReconcileResult
from contour_operator.render import Renderer
from contour_operator.render.renderer import RenderConfig
from contour_operator.status import ReconcileErrorReason
from contour_operator.test_helpers.helpers import (
    TEST_KEY,
    MockClusterClient,
    configure_logging,
    current_conditions,
    library_config,
    setup_contour,
    set_all_workloads_ready,
    sync_cache,
)

configure_logging()

NS = constants.DEFAULT_OPERAND_NAMESPACE
DEPLOYMENT_ID = ObjectIdentity("apps/v1", "Deployment", NS, "contour")
CONTOUR_ID = ObjectIdentity(
    constants.CONTOUR_API_VERSION,
    constants.CONTOUR_KIND,
    TEST_KEY.namespace,
    TEST_KEY.name,
)

## Helpers #####################################################################


class Harness:
    """A reconciler over a mock cluster with a cache that is resynced before
    every reconcile
    """

    def __init__(self, spec=None, resources=None, **kwargs):
        self.client = MockClusterClient([setup_contour(spec, **kwargs)] + (resources or []))
        self.cache = ObjectCache()
        self.reconciler = Reconciler(
            self.client,
            CacheObserver(self.cache),
            renderer=Renderer(
                RenderConfig(contour_image="contour:v1.18.0", envoy_image="envoy:v1")
            ),
        )

    def reconcile(self) -> ReconcileResult:
        sync_cache(self.cache, self.client)
        return self.reconciler.safe_reconcile(TEST_KEY)

    def contour(self) -> dict:
        return self.client.get_identity(CONTOUR_ID)

    def set_spec(self, **spec):
        body = self.contour()
        body["spec"].update(spec)
        self.client.update(body)

    def conditions(self):
        return current_conditions(self.client, TEST_KEY)


## Create ######################################################################


def test_reconcile_create_then_available():
    """Make sure a new Contour is rendered, reports unavailable until the
    workloads are ready and then turns available
    """
    harness = Harness({"replicas": 2, "exposureMode": "LoadBalancer"})
    result = harness.reconcile()
    assert result.requeue
    assert result.requeue_after == harness.reconciler.progressing_requeue
    assert result.error is None

    deploy = harness.client.get_identity(DEPLOYMENT_ID)
    assert deploy["spec"]["replicas"] == 2
    envoy = harness.client.get("v1", "Service", "envoy", NS)
    assert envoy["spec"]["type"] == "LoadBalancer"
    assert harness.client.get("v1", "Namespace", NS) is not None

    conds = harness.conditions()
    assert conds["Available"]["status"] == "False"
    assert conds["Progressing"]["status"] == "True"
    assert conds["ReconcileError"]["status"] == "False"
    assert constants.CONTOUR_FINALIZER in harness.contour()["metadata"]["finalizers"]

    set_all_workloads_ready(harness.client, NS)
    result = harness.reconcile()
    assert result == ReconcileResult()
    conds = harness.conditions()
    assert conds["Available"]["status"] == "True"
    assert conds["Progressing"]["status"] == "False"
    status = harness.contour()["status"]
    assert status["observedGeneration"] == 1
    assert status["availableContours"] == 2
    assert status["availableEnvoys"] == 3


def test_reconcile_idempotent():
    """Make sure a converged Contour is reconciled without mutations"""
    harness = Harness()
    harness.reconcile()
    set_all_workloads_ready(harness.client, NS)
    harness.reconcile()
    harness.client.reset_records()

    assert harness.reconcile() == ReconcileResult()
    assert harness.client.mutations == []


def test_reconcile_scale_updates_deployment_only():
    """Make sure a replica change is a single update to the deployment"""
    harness = Harness({"replicas": 2})
    harness.reconcile()
    harness.set_spec(replicas=5)
    harness.client.reset_records()

    harness.reconcile()
    assert harness.client.mutations_of("update") == [DEPLOYMENT_ID]
    assert harness.client.mutations_of("create") == []
    assert harness.client.mutations_of("delete") == []
    assert harness.contour()["status"]["observedGeneration"] == 2


def test_reconcile_conflict_then_recovery():
    """Make sure a conflict on the workload update is reported and cleared by
    the next successful pass
    """
    harness = Harness({"replicas": 2})
    harness.reconcile()
    harness.set_spec(replicas=5)
    harness.client.fail_next("update", ConflictError("stale"), kind="Deployment")

    result = harness.reconcile()
    assert result.requeue
    assert result.requeue_after is None
    assert result.error.reason == "Conflict"
    assert not result.terminal
    conds = harness.conditions()
    assert conds["ReconcileError"]["status"] == "True"
    assert conds["ReconcileError"]["reason"] == "Conflict"

    harness.reconcile()
    assert harness.client.get_identity(DEPLOYMENT_ID)["spec"]["replicas"] == 5
    assert harness.conditions()["ReconcileError"]["status"] == "False"


## Invalid specs ###############################################################


def test_reconcile_invalid_spec_is_terminal():
    """Make sure an invalid persisted spec is reported and nothing is applied"""
    harness = Harness({"replicas": -1})
    result = harness.reconcile()
    assert result.terminal
    assert not result.requeue
    assert harness.client.mutations == [("update_status", CONTOUR_ID)]
    cond = harness.conditions()["ReconcileError"]
    assert cond["status"] == "True"
    assert cond["reason"] == "InvalidSpec"
    assert "spec.replicas" in cond["message"]


def test_reconcile_invariant_error_is_terminal():
    """Make sure an internal invariant violation is not retried"""
    harness = Harness()
    harness.reconciler.renderer = mock.MagicMock()
    harness.reconciler.renderer.render.side_effect = InvariantError("duplicate")
    result = harness.reconcile()
    assert result.terminal
    assert harness.conditions()["ReconcileError"]["reason"] == "InvariantViolation"


## Errors ######################################################################


def test_safe_reconcile_transient_error():
    """Make sure a transient failure requeues without touching status"""
    harness = Harness()
    harness.client.fail_next("get", UnavailableError("down"), kind="Contour")
    result = harness.reconcile()
    assert result.requeue
    assert not result.terminal
    assert isinstance(result.error, UnavailableError)
    assert harness.client.mutations == []


def test_safe_reconcile_fatal_error_recorded():
    """Make sure a fatal cluster error is retried and recorded"""
    harness = Harness()
    harness.client.fail_next("get", ClusterError("broken"), kind="Contour")
    result = harness.reconcile()
    assert result.requeue
    assert harness.conditions()["ReconcileError"]["reason"] == "ClusterError"


def test_safe_reconcile_unexpected_error():
    """Make sure arbitrary exceptions never escape"""
    harness = Harness()
    harness.reconciler.renderer = mock.MagicMock()
    harness.reconciler.renderer.render.side_effect = RuntimeError("surprise")
    result = harness.reconcile()
    assert result.requeue
    assert isinstance(result.error, RuntimeError)
    cond = harness.conditions()["ReconcileError"]
    assert cond["reason"] == "ReconcileFailed"
    assert cond["message"] == "surprise"


def test_record_retries_exhausted():
    """Make sure giving up is visible in status"""
    harness = Harness()
    harness.reconciler.record_retries_exhausted(TEST_KEY, ConflictError("again"))
    cond = harness.conditions()["ReconcileError"]
    assert cond["reason"] == ReconcileErrorReason.RETRIES_EXHAUSTED.value
    assert cond["message"] == "again"


def test_record_error_status_write_failure():
    """Make sure a failed status write is swallowed and reported"""
    harness = Harness()
    harness.client.fail_next("update_status", ConflictError("stale"))
    assert not harness.reconciler.record_error(TEST_KEY, ClusterError("x"))


def test_status_not_managed():
    """Make sure no status is written when status management is off"""
    harness = Harness()
    with library_config(manage_status=False):
        harness.reconcile()
    assert harness.client.mutations_of("update_status") == []
    assert harness.client.get_identity(DEPLOYMENT_ID) is not None


## Preconditions ###############################################################


def test_reconcile_missing_contour():
    """Make sure a key whose Contour is gone is a no-op"""
    harness = Harness(name="other")
    assert harness.reconcile() == ReconcileResult()
    assert harness.client.mutations == []


def test_reconcile_waits_for_cache():
    """Make sure nothing is applied before the cache has synced"""
    harness = Harness()
    harness.cache.expect_kinds(["NotWatchedYet"])
    result = harness.reconcile()
    assert result.requeue
    assert result.requeue_after == CACHE_SYNC_DELAY
    assert harness.client.mutations == []


def test_reconcile_existing_namespace_not_owned():
    """Make sure a pre-existing operand namespace is left alone"""
    existing = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": NS}}
    harness = Harness(resources=[existing])
    harness.reconcile()
    assert ObjectIdentity("v1", "Namespace", "", NS) not in harness.client.mutations_of()


def test_reconcile_deferred_deletes_requeue_immediately():
    """Make sure deferred orphan deletes requeue without delay"""
    harness = Harness()
    harness.reconciler.applier = mock.MagicMock()
    harness.reconciler.applier.apply.return_value = mock.MagicMock(
        objects={}, errors=[], changed=False, deletions_deferred=True
    )
    result = harness.reconcile()
    assert result.requeue
    assert result.requeue_after == 0


## Deletion ####################################################################


def test_reconcile_deletion():
    """Make sure a deleted Contour tears down its objects before it goes away"""
    harness = Harness()
    harness.reconcile()
    sync_cache(harness.cache, harness.client)
    owned_count = len(harness.cache.owned_by(TEST_KEY))
    assert owned_count > 3
    harness.client.delete(
        constants.CONTOUR_API_VERSION,
        constants.CONTOUR_KIND,
        TEST_KEY.name,
        TEST_KEY.namespace,
    )
    assert harness.contour() is not None
    harness.client.reset_records()

    result = harness.reconcile()
    assert result.requeue
    assert len(harness.client.mutations_of("delete")) == owned_count
    assert harness.contour() is not None

    result = harness.reconcile()
    assert result == ReconcileResult()
    assert harness.contour() is None
    # The unowned operand namespace survives
    assert harness.client.get("v1", "Namespace", NS) is not None

    assert harness.reconcile() == ReconcileResult()

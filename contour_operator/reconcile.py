"""
The Reconciler drives a single Contour toward its desired state. One call to
reconcile runs the whole pipeline for one key:

    1. Read the Contour fresh from the cluster
    2. Run the finalizer path if it is being deleted
    3. Validate the persisted spec (invalid specs are terminal)
    4. Ensure the finalizer marker and the operand namespace
    5. Render, observe, diff and apply
    6. Aggregate and write back the status
"""

# Standard
from dataclasses import dataclass
from typing import Optional
import copy

# First Party
import alog

# Local
from . import config, constants
from .admission import validate
from .applier import ApplyError, Applier
from .cluster import ClusterClientBase
from .exceptions import (
    AlreadyExistsError,
    InvariantError,
    OperatorError,
    ValidationError,
)
from .finalizer import Finalizer, add_finalizer
from .log_format import log_extra
from .metrics import OWNED_OBJECTS, RECONCILE_DURATION, RECONCILE_TOTAL
from .model import Contour, ObjectIdentity, ReconcileKey
from .observer import CacheObserver
from .render import Renderer
from .status import (
    ReconcileErrorReason,
    aggregate,
    build_status,
    get_condition,
    make_error_condition,
    merge_conditions,
    write_status,
)
from .utils import generate_id, to_seconds

log = alog.use_channel("RCNCL")

# Delay before retrying a key whose cache has not finished its initial list
CACHE_SYNC_DELAY = 1.0


@dataclass
class ReconcileResult:
    """The outcome of one reconcile, used by the scheduler to decide whether
    and when to requeue the key

    requeue_after=None with requeue=True means "retry with backoff"
    """

    requeue: bool = False
    requeue_after: Optional[float] = None
    error: Optional[Exception] = None
    terminal: bool = False

    @property
    def outcome(self) -> str:
        if self.terminal:
            return "terminal"
        if self.error is not None:
            return "error"
        if self.requeue:
            return "requeue"
        return "success"


class Reconciler:
    """Composes the Renderer, Observer, Applier, status aggregation and the
    Finalizer for one key at a time
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        client: ClusterClientBase,
        observer: CacheObserver,
        renderer: Optional[Renderer] = None,
        applier: Optional[Applier] = None,
        finalizer: Optional[Finalizer] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client used for every cluster read and write
            observer:  CacheObserver
                Read access to the cached owned objects
            renderer:  Optional[Renderer]
                Renderer to use. Defaults to one configured from config.
            applier:  Optional[Applier]
                Applier to use. Defaults to one on the given client.
            finalizer:  Optional[Finalizer]
                Finalizer to use. Defaults to one on the given client.
        """
        self.client = client
        self.observer = observer
        self.renderer = renderer or Renderer()
        self.applier = applier or Applier(client)
        self.finalizer = finalizer or Finalizer(client, observer)
        self.progressing_requeue = to_seconds(config.progressing_requeue)

    ## Reconciliation ##########################################################

    @alog.logged_function(log.debug)
    @alog.timed_function(log.debug, "Reconcile finished in: ")
    def reconcile(self, key: ReconcileKey) -> ReconcileResult:
        """Run one reconcile for the given key. Errors from the cluster
        propagate. Use safe_reconcile for a call that never raises.

        Args:
            key:  ReconcileKey
                The Contour to reconcile

        Returns:
            result:  ReconcileResult
                Whether and when to requeue
        """
        reconcile_id = generate_id()
        body = self.client.get(
            constants.CONTOUR_API_VERSION, constants.CONTOUR_KIND, key.name, key.namespace
        )
        if body is None:
            log.debug("Contour %s no longer exists", key)
            return ReconcileResult()
        contour = Contour(body)
        extra = log_extra(contour.body, reconcile_id)
        log.info("Reconciling %s at generation %s", key, contour.generation, extra=extra)

        if contour.is_deleting:
            return self._finalize(contour)

        if not self.observer.has_synced():
            log.debug("Cache not yet synced. Requeueing %s", key, extra=extra)
            return ReconcileResult(requeue=True, requeue_after=CACHE_SYNC_DELAY)

        verdict = validate(contour.body)
        if not verdict.allowed:
            log.warning("Invalid spec for %s: %s", key, verdict.reason, extra=extra)
            error = ValidationError(verdict.reason)
            self.record_error(key, error)
            return ReconcileResult(error=error, terminal=True)

        contour = add_finalizer(self.client, contour)
        self._ensure_namespace(contour)

        desired = self.renderer.render(contour)
        observed = self.observer.observe(key)
        result = self.applier.apply(contour, desired, observed)

        current = dict(observed)
        current.update(result.objects)
        conditions = aggregate(contour, desired, current, result.errors, result.changed)
        if config.manage_status:
            write_status(
                self.client, contour, build_status(contour, conditions, current, desired)
            )
        OWNED_OBJECTS.labels(namespace=key.namespace, name=key.name).set(
            len(result.objects)
        )

        if result.errors:
            first = result.errors[0]
            log.info(
                "Reconcile of %s had %d errors. First: %s",
                key,
                len(result.errors),
                first.message,
                extra=extra,
            )
            return ReconcileResult(requeue=True, error=_error_from(first))
        if result.deletions_deferred:
            return ReconcileResult(requeue=True, requeue_after=0)
        if get_condition(constants.PROGRESSING_CONDITION, {"conditions": conditions}).get(
            "status"
        ) == str(True):
            return ReconcileResult(requeue=True, requeue_after=self.progressing_requeue)
        return ReconcileResult()

    def safe_reconcile(self, key: ReconcileKey) -> ReconcileResult:
        """Call reconcile and turn every error into a ReconcileResult. This
        never raises.
        """
        with RECONCILE_DURATION.time():
            try:
                result = self.reconcile(key)
            except OperatorError as err:
                log.warning("Reconcile of %s failed: %s", key, err)
                terminal = err.reason in _TERMINAL_REASONS
                result = ReconcileResult(requeue=not terminal, error=err, terminal=terminal)
                if err.is_fatal_error:
                    self.record_error(key, err)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Handling caught error in reconcile: %s", err, exc_info=True)
                result = ReconcileResult(requeue=True, error=err)
                self.record_error(key, err)
        RECONCILE_TOTAL.labels(result=result.outcome).inc()
        return result

    def record_error(
        self, key: ReconcileKey, error: Exception, reason: Optional[str] = None
    ) -> bool:
        """Write a ReconcileError condition for an error that stopped the
        reconcile before the status could be aggregated. Failures to write are
        logged and otherwise ignored.

        Args:
            key:  ReconcileKey
                The Contour to report on
            error:  Exception
                The error to report
            reason:  Optional[str]
                Overrides the reason derived from the error

        Returns:
            written:  bool
                True if the status was written
        """
        if not config.manage_status:
            return False
        try:
            body = self.client.get(
                constants.CONTOUR_API_VERSION,
                constants.CONTOUR_KIND,
                key.name,
                key.namespace,
            )
            if body is None:
                return False
            contour = Contour(body)
            apply_error = ApplyError(
                identity=ObjectIdentity.from_body(contour.body),
                reason=reason or getattr(error, "reason", "ReconcileFailed"),
                message=str(error),
                transient=getattr(error, "is_transient", True),
            )
            status = copy.deepcopy(contour.status)
            status["conditions"] = merge_conditions(
                contour.conditions,
                [make_error_condition([apply_error], contour.generation)],
            )
            status["observedGeneration"] = max(
                contour.observed_generation or 0, contour.generation
            )
            return write_status(self.client, contour, status)
        except OperatorError as err:
            log.warning("Failed to record error status for %s: %s", key, err)
            return False

    def record_retries_exhausted(self, key: ReconcileKey, error: Optional[Exception]):
        """Report that the scheduler stopped retrying the key"""
        log.warning("Giving up on %s after repeated failures: %s", key, error)
        self.record_error(
            key,
            error or OperatorError("retries exhausted", is_fatal_error=True),
            reason=ReconcileErrorReason.RETRIES_EXHAUSTED.value,
        )

    ## Implementation Details ##################################################

    def _finalize(self, contour: Contour) -> ReconcileResult:
        result = self.finalizer.finalize(contour)
        if result.done:
            OWNED_OBJECTS.labels(namespace=contour.namespace, name=contour.name).set(0)
            return ReconcileResult()
        if result.errors:
            return ReconcileResult(requeue=True, error=_error_from(result.errors[0]))
        return ReconcileResult(requeue=True, requeue_after=self.progressing_requeue)

    def _ensure_namespace(self, contour: Contour):
        """Create the operand namespace if it is missing and not owned. An
        unowned namespace is never updated or deleted.
        """
        if contour.spec.namespace.remove_on_deletion:
            return
        name = contour.spec.namespace.name
        if self.client.get("v1", "Namespace", name) is not None:
            return
        log.info("Creating operand namespace %s", name)
        try:
            self.client.create(
                {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}
            )
        except AlreadyExistsError:
            log.debug2("Namespace %s was created concurrently", name)


# Failures that retrying cannot fix until the Contour changes
_TERMINAL_REASONS = [ValidationError.reason, InvariantError.reason]


def _error_from(apply_error: ApplyError) -> OperatorError:
    """Rebuild an exception from a recorded apply error"""
    err = OperatorError(apply_error.message, is_fatal_error=not apply_error.transient)
    err.reason = apply_error.reason
    return err

"""
The Differ/Applier computes the minimal set of mutations that brings the live
objects of a Contour to the desired objects, then executes them in dependency
order. Per-object failures are recorded and do not stop the remaining work.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .cluster import ClusterClientBase
from .exceptions import (
    AlreadyExistsError,
    NotFoundError,
    OperatorError,
    OwnershipConflictError,
    TransientError,
)
from .model import Contour, KubeObject, ObjectIdentity, apply_order_key, from_dict
from .render import DesiredObjectSet

log = alog.use_channel("APPLY")

## Types #######################################################################


@dataclass
class ApplyError:
    """A failure to apply a single object"""

    identity: ObjectIdentity
    reason: str
    message: str
    transient: bool

    @classmethod
    def from_exception(cls, identity: ObjectIdentity, err: OperatorError) -> "ApplyError":
        return cls(
            identity=identity,
            reason=err.reason,
            message=f"{identity}: {err}",
            transient=err.is_transient,
        )


@dataclass
class Plan:
    """The mutations needed to converge live state onto desired state"""

    to_create: List[KubeObject] = field(default_factory=list)
    to_update: List[Tuple[KubeObject, KubeObject]] = field(default_factory=list)
    to_delete: List[KubeObject] = field(default_factory=list)
    unchanged: List[ObjectIdentity] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


@dataclass
class ApplyResult:
    """The outcome of one apply pass"""

    created: List[ObjectIdentity] = field(default_factory=list)
    updated: List[ObjectIdentity] = field(default_factory=list)
    deleted: List[ObjectIdentity] = field(default_factory=list)
    errors: List[ApplyError] = field(default_factory=list)
    # Most recent known live state of each desired object
    objects: Dict[ObjectIdentity, KubeObject] = field(default_factory=dict)
    deletions_deferred: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    @property
    def succeeded(self) -> bool:
        return not self.errors


## Differ ######################################################################


def needs_update(desired: KubeObject, live: KubeObject) -> bool:
    """Whether the operator-managed fields of the live object differ from the
    desired object
    """
    difference = DeepDiff(
        desired.managed_projection(),
        live.project_onto(desired),
        ignore_order=False,
    )
    if difference:
        log.debug3("Diff for %s: %s", desired.identity, difference)
    return bool(difference)


def diff(desired: DesiredObjectSet, live: Dict[ObjectIdentity, KubeObject]) -> Plan:
    """Partition desired and live objects into creates, updates and deletes

    Args:
        desired:  DesiredObjectSet
            The rendered objects
        live:  Dict[ObjectIdentity, KubeObject]
            The observed objects owned by the same Contour

    Returns:
        plan:  Plan
            Creates and updates in apply order, deletes in reverse apply order
    """
    plan = Plan()
    for desired_obj in desired.in_apply_order():
        live_obj = live.get(desired_obj.identity)
        if live_obj is None:
            plan.to_create.append(desired_obj)
        elif needs_update(desired_obj, live_obj):
            plan.to_update.append((desired_obj, live_obj))
        else:
            plan.unchanged.append(desired_obj.identity)
    plan.to_delete = sorted(
        [obj for identity, obj in live.items() if identity not in desired],
        key=apply_order_key,
        reverse=True,
    )
    return plan


## Applier #####################################################################


class Applier:
    """Executes plans against the cluster through the given client"""

    def __init__(self, client: ClusterClientBase):
        self.client = client

    def apply(
        self,
        owner: Contour,
        desired: DesiredObjectSet,
        live: Dict[ObjectIdentity, KubeObject],
    ) -> ApplyResult:
        """Converge the live objects of owner onto desired

        Args:
            owner:  Contour
                The Contour the objects were rendered from
            desired:  DesiredObjectSet
                The rendered objects
            live:  Dict[ObjectIdentity, KubeObject]
                The observed objects owned by owner

        Returns:
            result:  ApplyResult
                What was mutated and what failed. Running apply again with no
                external change performs no mutations.
        """
        plan = diff(desired, live)
        result = ApplyResult()
        log.debug(
            "Plan for %s: %d create / %d update / %d delete / %d unchanged",
            owner.key,
            len(plan.to_create),
            len(plan.to_update),
            len(plan.to_delete),
            len(plan.unchanged),
        )
        for identity in plan.unchanged:
            result.objects[identity] = live[identity]

        # Creates and updates interleaved in dependency order
        pending = [(obj, None) for obj in plan.to_create] + list(plan.to_update)
        pending.sort(key=lambda pair: apply_order_key(pair[0]))
        for desired_obj, live_obj in pending:
            try:
                if live_obj is None:
                    self._create(owner, desired_obj, result)
                else:
                    self._update(desired_obj, live_obj, result)
            except OperatorError as err:
                log.warning("Failed to apply %s: %s", desired_obj.identity, err)
                result.errors.append(ApplyError.from_exception(desired_obj.identity, err))

        if plan.to_delete:
            self._delete_orphans(owner, plan.to_delete, result)
        return result

    ## Implementation Details ##################################################

    def _create(self, owner: Contour, desired: KubeObject, result: ApplyResult):
        identity = desired.identity
        try:
            created = self.client.create(desired.applied_body())
            log.info("Created %s", identity)
            result.created.append(identity)
            result.objects[identity] = from_dict(created)
            return
        except AlreadyExistsError:
            log.debug("Create of %s raced an existing object", identity)

        # The cache lagged behind the cluster. Re-read and decide.
        current = self.client.get_identity(identity)
        if current is None:
            raise TransientError(f"{identity} exists but could not be read")
        live = from_dict(current)
        if not live.is_owned_by(owner.key):
            raise OwnershipConflictError(
                f"{identity} exists and is not owned by Contour {owner.key}"
            )
        if needs_update(desired, live):
            self._update(desired, live, result)
        else:
            result.objects[identity] = live

    def _update(self, desired: KubeObject, live: KubeObject, result: ApplyResult):
        identity = desired.identity
        if desired.IMMUTABLE:
            self._replace(desired, live, result)
            return
        try:
            updated = self.client.update(desired.prepare_update(live))
        except NotFoundError as err:
            raise TransientError(f"{identity} disappeared before update") from err
        log.info("Updated %s", identity)
        result.updated.append(identity)
        result.objects[identity] = from_dict(updated)

    def _replace(self, desired: KubeObject, live: KubeObject, result: ApplyResult):
        """Immutable objects are deleted and recreated"""
        identity = desired.identity
        if not live.deletion_timestamp:
            self.client.delete_object(live)
            log.info("Deleted %s for replacement", identity)
        created = self.client.create(desired.applied_body())
        log.info("Recreated %s", identity)
        result.updated.append(identity)
        result.objects[identity] = from_dict(created)

    def _delete_orphans(
        self, owner: Contour, orphans: List[KubeObject], result: ApplyResult
    ):
        """Delete owned objects that are no longer rendered. Skipped entirely if
        the Contour has moved to a newer generation since it was rendered.
        """
        current_generation = self._current_generation(owner, result)
        if current_generation != owner.generation:
            log.info(
                "Deferring %d deletions for %s: generation %s != rendered %s",
                len(orphans),
                owner.key,
                current_generation,
                owner.generation,
            )
            result.deletions_deferred = True
            return

        for live_obj in orphans:
            identity = live_obj.identity
            if not live_obj.is_owned_by(owner.key):
                log.warning("Refusing to delete unowned object %s", identity)
                continue
            if live_obj.deletion_timestamp:
                log.debug2("%s is already being deleted", identity)
                continue
            try:
                if self.client.delete_object(live_obj):
                    log.info("Deleted %s", identity)
                    result.deleted.append(identity)
            except OperatorError as err:
                log.warning("Failed to delete %s: %s", identity, err)
                result.errors.append(ApplyError.from_exception(identity, err))

    def _current_generation(self, owner: Contour, result: ApplyResult) -> Optional[int]:
        try:
            current = self.client.get(
                owner.API_VERSION, owner.KIND, owner.name, owner.namespace
            )
        except OperatorError as err:
            result.errors.append(
                ApplyError.from_exception(ObjectIdentity.from_body(owner.body), err)
            )
            return None
        if current is None:
            return None
        return current.get("metadata", {}).get("generation", 0)

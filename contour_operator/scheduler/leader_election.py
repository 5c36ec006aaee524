"""
Leader election. Only the leader runs reconciles and watches. When election is
disabled the AlwaysLeaderManager is used and every instance leads.
"""

# Standard
from datetime import datetime, timedelta, timezone
from typing import Optional
import abc
import threading

# Third Party
from dateutil.parser import parse

# First Party
import alog

# Local
from .. import config
from ..cluster import ClusterClientBase
from ..exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    OperatorError,
    assert_config,
)
from ..utils import get_operator_namespace, get_pod_name, to_seconds

log = alog.use_channel("LDRELC")

LEASE_API_VERSION = "coordination.k8s.io/v1"
LEASE_KIND = "Lease"
LEASE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class LeadershipManagerBase(abc.ABC):
    """Base class for leader election"""

    @abc.abstractmethod
    def acquire(self, force: bool = False) -> bool:
        """Start acquiring or renewing the lock

        Args:
            force:  bool
                Whether to take the lock irrespective of its state

        Returns:
            leader:  bool
                True if this instance currently holds the lock
        """

    @abc.abstractmethod
    def release(self):
        """Stop renewing and give up the lock"""

    @abc.abstractmethod
    def is_leader(self) -> bool:
        """Whether this instance currently holds the lock"""

    def wait_for_leadership(self, timeout: Optional[float] = None) -> bool:
        """Block until leadership is acquired or the timeout elapses"""
        return self.is_leader()


class AlwaysLeaderManager(LeadershipManagerBase):
    """Leadership manager for a single instance. It always leads."""

    def acquire(self, force: bool = False) -> bool:
        return True

    def release(self):
        pass

    def is_leader(self) -> bool:
        return True

    def wait_for_leadership(self, timeout: Optional[float] = None) -> bool:
        return True


class LeaseLeadershipManager(LeadershipManagerBase):
    """
    Leader election over a coordination.k8s.io/v1 Lease. A background thread
    renews the lease while this instance holds it and takes it over once the
    holder stops renewing for longer than the lease duration.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        client: ClusterClientBase,
        lease_name: Optional[str] = None,
        namespace: Optional[str] = None,
        identity: Optional[str] = None,
        lease_duration: Optional[float] = None,
        poll_time: Optional[float] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                Client used to read and write the lease
            lease_name:  Optional[str]
                Name of the lease. Defaults to leader_election.lease_name.
            namespace:  Optional[str]
                Namespace of the lease. Defaults to the operator namespace.
            identity:  Optional[str]
                Holder identity. Defaults to the pod name.
            lease_duration:  Optional[float]
                Seconds a lease is valid without renewal
            poll_time:  Optional[float]
                Seconds between renew attempts
        """
        self.client = client
        self.lease_name = lease_name or config.leader_election.lease_name
        self.namespace = namespace or get_operator_namespace(
            config.leader_election.namespace
        )
        self.lock_identity = identity or get_pod_name(config.pod_name)
        self.lease_duration = lease_duration or to_seconds(
            config.leader_election.duration
        )
        self.poll_time = poll_time or to_seconds(config.leader_election.poll_time)
        assert_config(self.lease_name, "Unable to detect lease name")
        assert_config(self.namespace, "Unable to detect operator namespace")
        assert_config(self.lock_identity, "Unable to detect lock identity")

        self.leader = threading.Event()
        self.shutdown = threading.Event()
        self.run_lock = threading.Lock()
        self.leadership_thread = threading.Thread(
            name="leadership_thread", target=self.run, daemon=True
        )

    ## Lock Interface ##########################################################

    def acquire(self, force: bool = False) -> bool:
        if force:
            self.leader.set()
            return True
        if not self.leadership_thread.is_alive() and not self.shutdown.is_set():
            log.info("Starting %s: %s", self.__class__.__name__, self.leadership_thread.name)
            self.leadership_thread.start()
        return self.leader.is_set()

    def release(self):
        """Stop the renew thread and clear the holder so another instance can
        take over without waiting for expiry
        """
        self.shutdown.set()
        if self.leadership_thread.is_alive():
            self.leadership_thread.join()
        if self.leader.is_set():
            self._clear_holder()
        self.leader.clear()

    def is_leader(self) -> bool:
        return self.leader.is_set()

    def wait_for_leadership(self, timeout: Optional[float] = None) -> bool:
        return self.leader.wait(timeout)

    ## Implementation Details ##################################################

    def run(self):
        """Loop to continuously run renew or acquire every poll_time"""
        while not self.shutdown.is_set():
            self.run_renew_or_acquire()
            self.shutdown.wait(self.poll_time)
        log.debug("Shutting down %s Thread", self.__class__.__name__)

    def run_renew_or_acquire(self):
        """Run renew_or_acquire, dropping leadership on any failure"""
        log.debug2("Running renew or acquire for lease %s", self.lease_name)
        with self.run_lock:
            try:
                self.renew_or_acquire()
            except OperatorError as err:
                log.warning("Error detected while acquiring leadership lock: %s", err)
                self.release_lock()

    def renew_or_acquire(self, now: Optional[datetime] = None):
        """Renew or acquire the lease by checking its current holder"""
        current_time = now or datetime.now(timezone.utc)
        expected_spec = {
            "holderIdentity": self.lock_identity,
            "acquireTime": current_time.strftime(LEASE_TIME_FORMAT),
            "leaseDurationSeconds": round(self.lease_duration),
            "leaseTransitions": 0,
            "renewTime": current_time.strftime(LEASE_TIME_FORMAT),
        }

        lease = self.client.get(
            LEASE_API_VERSION, LEASE_KIND, self.lease_name, self.namespace
        )
        if lease is None:
            try:
                self.client.create(self._lease_body(expected_spec))
            except AlreadyExistsError:
                log.debug("Lease %s was created by another instance", self.lease_name)
                self.release_lock()
                return
            self.acquire_lock()
            return

        lease_spec = lease.get("spec") or {}
        holder = lease_spec.get("holderIdentity")
        if holder == self.lock_identity:
            expected_spec["acquireTime"] = lease_spec.get(
                "acquireTime", expected_spec["acquireTime"]
            )
            expected_spec["leaseTransitions"] = lease_spec.get("leaseTransitions", 0)
        else:
            if holder and not self._expired(lease_spec, current_time):
                self.release_lock()
                return
            log.info("Taking leadership from %s", holder)
            expected_spec["leaseTransitions"] = lease_spec.get("leaseTransitions", 0) + 1

        body = self._lease_body(expected_spec)
        body["metadata"]["resourceVersion"] = lease["metadata"].get("resourceVersion")
        try:
            self.client.update(body)
        except (ConflictError, NotFoundError) as err:
            log.debug("Lost the race for lease %s: %s", self.lease_name, err)
            self.release_lock()
            return
        self.acquire_lock()

    def acquire_lock(self):
        if not self.leader.is_set():
            log.info("Acquired leadership lease %s", self.lease_name)
        self.leader.set()

    def release_lock(self):
        if self.leader.is_set():
            log.info("Lost leadership lease %s", self.lease_name)
        self.leader.clear()

    def _expired(self, lease_spec: dict, current_time: datetime) -> bool:
        renew_time = lease_spec.get("renewTime")
        if not renew_time:
            return True
        duration = timedelta(
            seconds=lease_spec.get("leaseDurationSeconds") or self.lease_duration
        )
        renewed = parse(renew_time)
        if renewed.tzinfo is None:
            renewed = renewed.replace(tzinfo=timezone.utc)
        return renewed + duration <= current_time

    def _clear_holder(self):
        try:
            lease = self.client.get(
                LEASE_API_VERSION, LEASE_KIND, self.lease_name, self.namespace
            )
            if lease and (lease.get("spec") or {}).get("holderIdentity") == self.lock_identity:
                lease["spec"]["holderIdentity"] = None
                self.client.update(lease)
        except OperatorError as err:
            log.warning("Unable to release lease %s: %s", self.lease_name, err)

    def _lease_body(self, spec: dict) -> dict:
        return {
            "apiVersion": LEASE_API_VERSION,
            "kind": LEASE_KIND,
            "metadata": {"name": self.lease_name, "namespace": self.namespace},
            "spec": spec,
        }

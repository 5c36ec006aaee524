"""
Tests for lease based leader election
"""
# Standard
from datetime import datetime, timedelta, timezone

# Third Party
import pytest

# Local
from contour_operator.exceptions import ConfigError, ConflictError, UnavailableError
from contour_operator.scheduler import AlwaysLeaderManager, LeaseLeadershipManager
from contour_operator.scheduler.leader_election import LEASE_API_VERSION, LEASE_KIND
from contour_operator.test_helpers.helpers import (
    MockClusterClient,
    configure_logging,
    library_config,
)

configure_logging()

LEASE_NAME = "contour-operator-lock"
LEASE_NAMESPACE = "contour-operator"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

## Helpers #####################################################################


def make_manager(client, identity="pod-a", **kwargs):
    kwargs.setdefault("lease_duration", 30)
    kwargs.setdefault("poll_time", 0.05)
    return LeaseLeadershipManager(
        client,
        lease_name=LEASE_NAME,
        namespace=LEASE_NAMESPACE,
        identity=identity,
        **kwargs,
    )


def get_lease(client):
    return client.get(LEASE_API_VERSION, LEASE_KIND, LEASE_NAME, LEASE_NAMESPACE)


def existing_lease(holder, renew_time, transitions=0):
    return {
        "apiVersion": LEASE_API_VERSION,
        "kind": LEASE_KIND,
        "metadata": {"name": LEASE_NAME, "namespace": LEASE_NAMESPACE},
        "spec": {
            "holderIdentity": holder,
            "acquireTime": renew_time,
            "renewTime": renew_time,
            "leaseDurationSeconds": 30,
            "leaseTransitions": transitions,
        },
    }


## Tests #######################################################################


def test_always_leader():
    manager = AlwaysLeaderManager()
    assert manager.acquire()
    assert manager.is_leader()
    assert manager.wait_for_leadership(timeout=0)
    manager.release()
    assert manager.is_leader()


def test_acquire_creates_lease():
    """Without a lease the instance creates one and leads"""
    client = MockClusterClient()
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    assert manager.is_leader()
    lease = get_lease(client)
    assert lease["spec"]["holderIdentity"] == "pod-a"
    assert lease["spec"]["leaseDurationSeconds"] == 30
    assert lease["spec"]["leaseTransitions"] == 0


def test_renew_keeps_acquire_time():
    """Renewal moves renewTime forward and keeps acquireTime"""
    client = MockClusterClient()
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    acquired = get_lease(client)["spec"]["acquireTime"]
    manager.renew_or_acquire(now=NOW + timedelta(seconds=10))
    spec = get_lease(client)["spec"]
    assert manager.is_leader()
    assert spec["acquireTime"] == acquired
    assert spec["renewTime"] != acquired
    assert spec["leaseTransitions"] == 0


def test_held_lease_blocks_other_instance():
    """A lease renewed within its duration is not taken over"""
    client = MockClusterClient(
        resources=[existing_lease("pod-b", "2024-01-01T11:59:50.000000Z")]
    )
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    assert not manager.is_leader()
    assert get_lease(client)["spec"]["holderIdentity"] == "pod-b"
    assert not client.mutations_of("update")


def test_expired_lease_taken_over():
    """An expired lease is taken over and the transition counted"""
    client = MockClusterClient(
        resources=[existing_lease("pod-b", "2024-01-01T11:58:00.000000Z", transitions=2)]
    )
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    assert manager.is_leader()
    spec = get_lease(client)["spec"]
    assert spec["holderIdentity"] == "pod-a"
    assert spec["leaseTransitions"] == 3


def test_released_lease_taken_over():
    """A lease without a holder is free to take"""
    client = MockClusterClient(
        resources=[existing_lease(None, "2024-01-01T11:59:59.000000Z")]
    )
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    assert manager.is_leader()


def test_lost_race_on_update():
    """A conflicting write means another instance won"""
    client = MockClusterClient(
        resources=[existing_lease("pod-b", "2024-01-01T11:58:00.000000Z")]
    )
    manager = make_manager(client)
    manager.leader.set()
    client.fail_next("update", ConflictError("raced"), kind=LEASE_KIND)
    manager.renew_or_acquire(now=NOW)
    assert not manager.is_leader()


def test_lost_race_on_create():
    """A lease created concurrently by another instance is not ours"""
    client = MockClusterClient()
    other = make_manager(client, identity="pod-b")
    manager = make_manager(client)

    # Both see no lease, the other creates it first
    original_get = client.get

    def get_then_race(*args, **kwargs):
        result = original_get(*args, **kwargs)
        client.get = original_get
        other.renew_or_acquire(now=NOW)
        return result

    client.get = get_then_race
    manager.renew_or_acquire(now=NOW)
    assert other.is_leader()
    assert not manager.is_leader()


def test_api_error_drops_leadership():
    """Any API failure while renewing gives up leadership"""
    client = MockClusterClient()
    manager = make_manager(client)
    manager.renew_or_acquire(now=NOW)
    assert manager.is_leader()
    client.fail_next("get", UnavailableError("apiserver down"), kind=LEASE_KIND)
    manager.run_renew_or_acquire()
    assert not manager.is_leader()


@pytest.mark.timeout(5)
def test_acquire_thread_and_release():
    """The renew thread acquires the lease and release hands it back"""
    client = MockClusterClient()
    manager = make_manager(client)
    manager.acquire()
    assert manager.wait_for_leadership(timeout=2)
    manager.release()
    assert not manager.is_leader()
    assert not manager.leadership_thread.is_alive()
    assert get_lease(client)["spec"]["holderIdentity"] is None

    # Another instance can take the released lease immediately
    other = make_manager(client, identity="pod-b")
    other.renew_or_acquire()
    assert other.is_leader()


def test_force_acquire():
    manager = make_manager(MockClusterClient())
    assert manager.acquire(force=True)
    assert manager.is_leader()


def test_missing_lease_name_is_config_error():
    """Without a lease name there is nothing to elect over"""
    with library_config(leader_election={"lease_name": None}):
        with pytest.raises(ConfigError):
            LeaseLeadershipManager(
                MockClusterClient(), namespace=LEASE_NAMESPACE, identity="pod-a"
            )


def test_defaults_from_config():
    """Lease settings default to the leader_election config section"""
    with library_config(
        leader_election={"lease_name": "my-lock", "duration": "1m", "poll_time": "5s"}
    ):
        manager = LeaseLeadershipManager(
            MockClusterClient(), namespace=LEASE_NAMESPACE, identity="pod-a"
        )
    assert manager.lease_name == "my-lock"
    assert manager.lease_duration == 60
    assert manager.poll_time == 5
    assert not manager.is_leader()

"""
Tests for the per-key retry backoff
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from contour_operator.exceptions import ConfigError
from contour_operator.scheduler import BackoffPolicy
from contour_operator.test_helpers.helpers import (
    TEST_KEY,
    configure_logging,
    library_config,
)

configure_logging()

## Helpers #####################################################################


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


## Tests #######################################################################


def test_delay_doubles_up_to_ceiling():
    """Delays double per failure and never exceed max_delay"""
    policy = BackoffPolicy(base_delay=1.0, max_delay=10.0)
    assert [policy.delay_for(count) for count in range(6)] == [1, 2, 4, 8, 10, 10]
    assert policy.delay_for(10000) == 10.0
    assert policy.delay_for(-1) == 1.0


def test_next_delay_counts_failures():
    """Each failure of a key pushes its next delay further out"""
    policy = BackoffPolicy(base_delay=0.5, max_delay=60.0)
    assert policy.next_delay(TEST_KEY) == 0.5
    assert policy.next_delay(TEST_KEY) == 1.0
    assert policy.next_delay(TEST_KEY) == 2.0
    assert policy.failures(TEST_KEY) == 3
    assert policy.failures("other") == 0
    assert policy.next_delay("other") == 0.5


def test_reset_clears_history():
    """After a reset the key starts over at the base delay"""
    policy = BackoffPolicy(base_delay=1.0, max_delay=60.0)
    policy.next_delay(TEST_KEY)
    policy.next_delay(TEST_KEY)
    policy.reset(TEST_KEY)
    assert policy.failures(TEST_KEY) == 0
    assert policy.next_delay(TEST_KEY) == 1.0


def test_exhausted_after_give_up_window():
    """A key is exhausted once its failures span give_up_after seconds"""
    clock = FakeClock()
    policy = BackoffPolicy(base_delay=1.0, max_delay=60.0, give_up_after=30, clock=clock)
    assert not policy.exhausted(TEST_KEY)
    policy.next_delay(TEST_KEY)
    clock.now += 29
    policy.next_delay(TEST_KEY)
    assert not policy.exhausted(TEST_KEY)
    clock.now += 1
    assert policy.exhausted(TEST_KEY)
    policy.reset(TEST_KEY)
    assert not policy.exhausted(TEST_KEY)


def test_never_exhausted_without_give_up():
    """Without give_up_after a key retries forever"""
    clock = FakeClock()
    policy = BackoffPolicy(clock=clock)
    policy.next_delay(TEST_KEY)
    clock.now += 10**6
    assert not policy.exhausted(TEST_KEY)


@pytest.mark.parametrize(
    ["kwargs"],
    [
        [{"base_delay": 0}],
        [{"base_delay": 5, "max_delay": 1}],
        [{"give_up_after": -1}],
    ],
)
def test_invalid_policy(kwargs):
    """Nonsensical policies are rejected as config errors"""
    with pytest.raises(ConfigError):
        BackoffPolicy(**kwargs)


def test_from_config():
    """The policy reads durations from the backoff config section"""
    policy = BackoffPolicy.from_config(
        aconfig.Config(
            {"base_delay": "2s", "max_delay": "1m", "give_up_after": "1hr"},
            override_env_vars=False,
        )
    )
    assert policy.base_delay == 2
    assert policy.max_delay == 60
    assert policy.give_up_after == 3600


def test_from_library_config():
    """Without an explicit section the library config is used"""
    with library_config(backoff={"base_delay": "3s", "give_up_after": None}):
        policy = BackoffPolicy.from_config()
    assert policy.base_delay == 3
    assert policy.give_up_after is None

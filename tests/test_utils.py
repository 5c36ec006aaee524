"""
Tests for the common utilities
"""

# Standard
from datetime import timedelta
import re

# Third Party
import pytest

# Local
from contour_operator import utils
from contour_operator.test_helpers.helpers import configure_logging

configure_logging()

## nested_get ##################################################################


def test_nested_get():
    """Make sure present, missing and None intermediates all behave"""
    dct = {"a": {"b": {"c": 1}}, "x": None, "y": 2}
    assert utils.nested_get(dct, "a.b.c") == 1
    assert utils.nested_get(dct, "a.b.d") is None
    assert utils.nested_get(dct, "a.z.c", "dflt") == "dflt"
    assert utils.nested_get(dct, "x.y", 3) == 3
    assert utils.nested_get(dct, "y.z", 4) == 4


## Time ########################################################################


@pytest.mark.parametrize(
    ["time_str", "expected"],
    [
        ("10s", timedelta(seconds=10)),
        ("5m", timedelta(minutes=5)),
        ("1hr", timedelta(hours=1)),
        ("1m30s", timedelta(minutes=1, seconds=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("", None),
        ("abc", None),
        (12, None),
    ],
)
def test_parse_time_delta(time_str, expected):
    """Make sure duration strings parse the way config values are written"""
    assert utils.parse_time_delta(time_str) == expected


def test_to_seconds():
    """Make sure numbers and strings both convert and garbage raises"""
    assert utils.to_seconds(None) is None
    assert utils.to_seconds(3) == 3.0
    assert utils.to_seconds("5m") == 300.0
    with pytest.raises(ValueError):
        utils.to_seconds("forever")
    with pytest.raises(ValueError):
        utils.to_seconds(True)


def test_now_timestamp_format():
    """Make sure timestamps use the kubernetes format"""
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$", utils.now_timestamp())


## Identity ####################################################################


def test_generate_id_unique():
    """Make sure ids are short and not repeated"""
    ids = {utils.generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(rid) == 12 for rid in ids)


def test_get_pod_name():
    """Make sure the configured name wins and the hostname is the fallback"""
    assert utils.get_pod_name("my-pod") == "my-pod"
    assert utils.get_pod_name(None)

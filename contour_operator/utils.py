"""
Common utilities shared across components in the library
"""

# Standard
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import base64
import pathlib
import platform
import re
import uuid

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when any part of the key is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            return dflt
    return dct.get(parts[-1], dflt)


## Time ########################################################################

_TIME_DELTA_REGEX = re.compile(
    r"^((?P<hours>\d+?)hr)?((?P<minutes>\d+?)m)?((?P<seconds>\d*\.?\d+?)s)?$"
)


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a duration string such as "1hr", "5m", "10s" or "1m30s"

    Args:
        time_str:  str
            The string representation of a timedelta

    Returns:
        result:  Optional[timedelta]
            The parsed timedelta, or None if the string could not be parsed
    """
    if not isinstance(time_str, str):
        return None
    parts = _TIME_DELTA_REGEX.match(time_str)
    if not parts or all(part is None for part in parts.groupdict().values()):
        return None
    return timedelta(
        **{name: float(param) for name, param in parts.groupdict().items() if param}
    )


def to_seconds(value: Any) -> Optional[float]:
    """Convert a config value that is either a number of seconds or a duration
    string into float seconds. None passes through.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    delta = parse_time_delta(value)
    if delta is None:
        raise ValueError(f"Invalid duration: {value}")
    return delta.total_seconds()


def now_timestamp() -> str:
    """Current UTC time formatted the way kubernetes formats timestamps"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


## Identity ####################################################################


def generate_id() -> str:
    """Generate a short random id used to correlate log lines of a single
    reconcile
    """
    return base64.b32encode(uuid.uuid4().bytes).decode("utf-8").lower().rstrip("=")[:12]


def get_pod_name(configured: Optional[str] = None) -> str:
    """Get the current pod from config or the hostname"""
    if configured:
        return configured
    log.debug("Pod name not configured, falling back to hostname")
    return platform.node().split(".")[0]


def get_operator_namespace(configured: str) -> str:
    """Get the operator's namespace from the service account mount, falling back
    to the configured value
    """
    namespace_file = pathlib.Path(
        "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
    )
    if namespace_file.is_file():
        return namespace_file.read_text(encoding="utf-8").strip()
    return configured

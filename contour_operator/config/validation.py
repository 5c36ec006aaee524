"""
Module to validate values in a loaded config
"""

# Standard
from typing import Any, Dict, List, Optional, Type, Union
import abc

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get, parse_time_delta

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all nested keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in _parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


################################################################################
## Implementation ##############################################################
################################################################################

# pylint: disable=too-few-public-methods


class _Parameter(abc.ABC):
    """A config parameter with a type check and a value check"""

    TYPE_KEY = None
    TYPES: List[type] = []

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Check the type and then the value of a loaded config entry"""
        if value is None:
            return self.optional
        # bool is an int subclass, so only accept it where asked for
        if isinstance(value, bool) and bool not in self.TYPES:
            log.warning("Invalid type <%s>", type(value))
            return False
        if not isinstance(value, tuple(self.TYPES)):
            log.warning("Invalid type <%s>", type(value))
            return False
        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type-specific value validation"""


class _NumberParameter(_Parameter):
    """A number with optional inclusive bounds"""

    TYPE_KEY = "number"
    TYPES = [int, float]

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


class _IntParameter(_NumberParameter):
    """A number that must be an int"""

    TYPE_KEY = "int"
    TYPES = [int]


class _StrParameter(_Parameter):
    """A str with optional length bounds"""

    TYPE_KEY = "str"
    TYPES = [str]

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


class _BoolParameter(_Parameter):
    TYPE_KEY = "bool"
    TYPES = [bool]

    def _validate_value(self, value: bool) -> bool:
        return True


class _EnumParameter(_Parameter):
    """A str value from a fixed set"""

    TYPE_KEY = "enum"
    TYPES = [str]

    def __init__(self, *, values: List[str], **kwargs):
        super().__init__(**kwargs)
        assert isinstance(values, list) and values, "Must specify enum values!"
        self.values = values

    def _validate_value(self, value: str) -> bool:
        return value in self.values


class _DurationParameter(_Parameter):
    """A duration given either as seconds or as a string like "1m30s" """

    TYPE_KEY = "duration"
    TYPES = [str, int, float]

    def _validate_value(self, value: Union[str, int, float]) -> bool:
        if isinstance(value, str):
            return parse_time_delta(value) is not None
        return value >= 0


# pylint: enable=too-few-public-methods

_PARAMETER_TYPES: Dict[str, Type[_Parameter]] = {
    param_class.TYPE_KEY: param_class
    for param_class in [
        _NumberParameter,
        _IntParameter,
        _StrParameter,
        _BoolParameter,
        _EnumParameter,
        _DurationParameter,
    ]
}


def _parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, _Parameter]:
    """Recursively parse the validation config into a flat dict of nested keys
    pointing to parameter validators
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        param_type = val.get("type")
        if isinstance(param_type, str) and param_type in _PARAMETER_TYPES:
            log.debug3("Found parameter at %s", nested_key)
            kwargs = {k: v for k, v in val.items() if k != "type"}
            output_dict[nested_key] = _PARAMETER_TYPES[param_type](**kwargs)
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(_parse_validation_config(val, prefix_parts=key_parts))
    return output_dict

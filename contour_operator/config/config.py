"""
Loads the operator config at import time, validates it and does the initial
log config. Every key in config.yaml can be overridden with an upper case
environment variable (nested keys joined by "_", e.g. BACKOFF_MAX_DELAY).
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from ..exceptions import ConfigError
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)


def load_config(path: str, env_overrides: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(_CONFIG_DIR, path), override_env_vars=env_overrides
    )


library_config = load_config("config.yaml", env_overrides=True)
validation_config = load_config("config_validation.yaml", env_overrides=False)

invalid_params = get_invalid_params(library_config, validation_config)
if invalid_params:
    raise ConfigError(f"Operator configuration found invalid values: {invalid_params}")

alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)

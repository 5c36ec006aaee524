"""
This module holds all of the command classes for the operator's main entrypoint
"""

# Local
from .base import CmdBase
from .check_health_cmd import CheckHealthCmd
from .run_operator_cmd import RunOperatorCmd

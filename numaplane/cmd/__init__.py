"""
This module holds all of the command classes for numaplane's main entrypoint
"""

# Local
from .base import CmdBase
from .run_controller_cmd import RunControllerCmd

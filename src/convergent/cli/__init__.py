"""
CLI commands for convergent.
"""

from convergent.cli.apply import apply_command, plan_command
from convergent.cli.validate import validate_command

__all__ = [
    "apply_command",
    "plan_command",
    "validate_command",
]

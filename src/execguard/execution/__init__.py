"""Execution backends the approval coordinator hands approved work to."""

from .command import execute_command
from .patch import PatchError, apply_patch, execute_patch, parse_patch
from .seatbelt import PATH_TO_SEATBELT_EXECUTABLE, seatbelt_command

__all__ = [
    "PATH_TO_SEATBELT_EXECUTABLE",
    "PatchError",
    "apply_patch",
    "execute_command",
    "execute_patch",
    "parse_patch",
    "seatbelt_command",
]

"""Adapters — execution capabilities handed to met?/meet actions.

Public re-exports for convenient access.
"""

from converge.adapters.base import Shell, ShellResult
from converge.adapters.mock import MockShell
from converge.adapters.shell.command import LocalShell

__all__ = [
    "LocalShell",
    "MockShell",
    "Shell",
    "ShellResult",
]

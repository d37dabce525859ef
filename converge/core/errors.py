"""
Error taxonomy for the convergence engine.

Two families:

    Static (raised by resolve, before anything runs):
        UnknownDependencyError, CycleError

    Per-node (caught by the runner, recorded in the node's RunResult):
        PlatformUnsupported, ConfigurationError, CheckError,
        RemediationError, ConvergenceFailure, NodeTimeout

Per-node errors never escape the runner. They only mean "skip my
dependents".
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from converge.adapters.base import ShellResult


class ConvergeError(Exception):
    """Base class for every engine error."""


# ── Static ──────────────────────────────────────────────────────────


class UnknownDependencyError(ConvergeError):
    """A dependency name that nothing declares."""

    def __init__(self, name: str, required_by: str | None = None):
        self.name = name
        self.required_by = required_by
        if required_by:
            message = f"'{required_by}' requires unknown dependency '{name}'"
        else:
            message = f"Unknown dependency '{name}'"
        super().__init__(message)


class CycleError(ConvergeError):
    """A prerequisite cycle. ``path`` is closed: ("a", "b", "a")."""

    def __init__(self, path: Sequence[str]):
        self.path = tuple(path)
        super().__init__(f"Dependency cycle: {' -> '.join(self.path)}")


# ── Per-node ────────────────────────────────────────────────────────


class PlatformUnsupported(ConvergeError):
    """No variant of a dependency applies to the host platform."""

    def __init__(self, name: str, platform: str, reason: str = ""):
        self.name = name
        self.platform = platform
        message = f"'{name}' has no variant for platform '{platform}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ConfigurationError(ConvergeError):
    """Invalid variable value, missing required variable, bad declaration."""


class CheckError(ConvergeError):
    """The met? predicate itself raised."""


class RemediationError(ConvergeError):
    """A meet action or hook raised or exited abnormally."""


class ConvergenceFailure(ConvergeError):
    """The post-meet recheck still reports unmet."""


class NodeTimeout(ConvergeError):
    """A met?/meet/hook invocation exceeded the caller's timeout."""


class CommandFailed(RemediationError):
    """Raised by ``ShellResult.check()`` for a non-zero exit."""

    def __init__(self, result: ShellResult):
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip()
        message = f"Command failed (exit {result.return_code}): {result.command}"
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
        super().__init__(message)

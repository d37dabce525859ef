"""
Adapter base — the execution capability met?/meet actions call.

The engine never spawns processes or changes privileges itself: it
hands every callable a Shell through the RunContext. A Shell offers

    run(command)              → ShellResult
    run_privileged(command)   → ShellResult
    in_directory(path, ...)   → scoped working directory

Shells NEVER raise for a failed command: the outcome is captured in
the ShellResult. Recipe authors who want a non-zero exit to abort a
meet action call ``result.check()``.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from pydantic import BaseModel

from converge.core.errors import CommandFailed

logger = logging.getLogger(__name__)

Command = str | Sequence[str]


class ShellResult(BaseModel):
    """Outcome of one command."""

    command: str
    return_code: int = 0
    stdout: str = ""
    stderr: str = ""
    cwd: str | None = None
    privileged: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """Whether the command exited 0."""
        return self.return_code == 0

    @property
    def output(self) -> str:
        """Stripped stdout."""
        return self.stdout.strip()

    def check(self) -> ShellResult:
        """Return self, or raise CommandFailed for a non-zero exit."""
        if not self.ok:
            raise CommandFailed(self)
        return self

    def __bool__(self) -> bool:
        return self.ok


class Shell(ABC):
    """Abstract execution capability.

    Subclasses implement ``_execute`` and ``_make_directory``; the
    directory scoping is shared. The working-directory stack is
    per thread so parallel branches do not see each other's scopes.
    """

    def __init__(self, cwd: str | Path | None = None):
        self._base_cwd = str(cwd) if cwd is not None else None
        self._local = threading.local()

    @property
    @abstractmethod
    def name(self) -> str:
        """Adapter identifier (e.g. 'local', 'mock')."""

    @property
    def cwd(self) -> str | None:
        """Working directory for commands issued from this thread."""
        stack: list[str] = getattr(self._local, "stack", [])
        return stack[-1] if stack else self._base_cwd

    def run(
        self,
        command: Command,
        *,
        input: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ShellResult:
        """Run a command as the current user."""
        return self._execute(
            command, privileged=False, input=input, timeout=timeout, env=env,
        )

    def run_privileged(
        self,
        command: Command,
        *,
        input: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ShellResult:
        """Run a command with elevated privileges."""
        return self._execute(
            command, privileged=True, input=input, timeout=timeout, env=env,
        )

    @contextmanager
    def in_directory(
        self,
        path: str | Path,
        create: str | None = None,
        privileged: bool = False,
    ) -> Iterator[str]:
        """Run the enclosed block's commands inside ``path``.

        Args:
            path: Target directory (relative paths resolve against the
                current scope).
            create: Octal mode string (e.g. ``"700"``); when given, the
                directory is created first if missing.
            privileged: Create the directory with elevated privileges.

        The previous working directory is restored on every exit path.
        """
        target = Path(path)
        if not target.is_absolute() and self.cwd:
            target = Path(self.cwd) / target
        resolved = str(target)

        if create is not None:
            self._make_directory(resolved, create, privileged)

        stack: list[str] = getattr(self._local, "stack", [])
        self._local.stack = stack
        stack.append(resolved)
        logger.debug("Entering %s", resolved)
        try:
            yield resolved
        finally:
            stack.pop()
            logger.debug("Leaving %s", resolved)

    @abstractmethod
    def _execute(
        self,
        command: Command,
        *,
        privileged: bool,
        input: str | None,
        timeout: float | None,
        env: Mapping[str, str] | None,
    ) -> ShellResult:
        """Execute one command. MUST NOT raise for command failure."""

    @abstractmethod
    def _make_directory(self, path: str, mode: str, privileged: bool) -> None:
        """Create ``path`` (and parents) with ``mode`` if it is missing."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def command_text(command: Command) -> str:
    """Render a command for logs and results."""
    if isinstance(command, str):
        return command
    return " ".join(command)

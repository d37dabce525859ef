"""
Local shell adapter — run commands on this host via subprocess.

This is the SINGLE PLACE where ``subprocess.run`` is called. String
commands go through the shell, lists are executed directly.

Privilege elevation:
    - Already root → no prefix
    - Otherwise    → ``sudo -n`` (non-interactive; fails fast instead
      of hanging on a password prompt)
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Mapping
from pathlib import Path

from converge.adapters.base import Command, Shell, ShellResult, command_text

logger = logging.getLogger(__name__)

# Return code reported for a timed-out command (matches coreutils `timeout`)
TIMEOUT_RETURN_CODE = 124


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


class LocalShell(Shell):
    """Execute commands on the local host and capture output.

    Args:
        cwd: Base working directory (default: process cwd).
        default_timeout: Seconds before a command is abandoned
            (None = no limit).
        sudo: Binary used for elevation.
    """

    def __init__(
        self,
        cwd: str | Path | None = None,
        default_timeout: float | None = None,
        sudo: str = "sudo",
    ):
        super().__init__(cwd)
        self._default_timeout = default_timeout
        self._sudo = sudo

    @property
    def name(self) -> str:
        return "local"

    def _execute(
        self,
        command: Command,
        *,
        privileged: bool,
        input: str | None,
        timeout: float | None,
        env: Mapping[str, str] | None,
    ) -> ShellResult:
        text = command_text(command)
        use_shell = isinstance(command, str)
        argv: str | list[str] = command if use_shell else list(command)

        if privileged and not _is_root():
            if use_shell:
                argv = [self._sudo, "-n", "sh", "-c", text]
                use_shell = False
            else:
                argv = [self._sudo, "-n", *argv]

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        timeout = timeout if timeout is not None else self._default_timeout
        cwd = self.cwd
        logger.debug("Executing: %s (cwd=%s, privileged=%s)", text, cwd, privileged)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                shell=use_shell,
                cwd=cwd,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout,
                env=run_env,
            )
        except subprocess.TimeoutExpired:
            return ShellResult(
                command=text,
                return_code=TIMEOUT_RETURN_CODE,
                stderr=f"Command timed out after {timeout}s",
                cwd=cwd,
                privileged=privileged,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return ShellResult(
                command=text,
                return_code=127,
                stderr=f"Command execution error: {e}",
                cwd=cwd,
                privileged=privileged,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode != 0:
            logger.debug("Command exited %d: %s", result.returncode, text)
        return ShellResult(
            command=text,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            cwd=cwd,
            privileged=privileged,
            duration_ms=elapsed_ms,
        )

    def _make_directory(self, path: str, mode: str, privileged: bool) -> None:
        if Path(path).is_dir():
            return
        if privileged and not _is_root():
            self.run_privileged(["mkdir", "-p", "-m", mode, path]).check()
            return
        Path(path).mkdir(parents=True, exist_ok=True)
        os.chmod(path, int(mode, 8))

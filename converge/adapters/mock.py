"""
Mock shell — test double for the execution adapter.

Records every command (with its working directory and privilege flag)
without touching the host. By default every command succeeds with
empty output; responses can be configured per command prefix.
"""

from __future__ import annotations

from collections.abc import Mapping

from converge.adapters.base import Command, Shell, ShellResult, command_text


class MockShell(Shell):
    """Universal mock shell for tests and ``--mock`` runs."""

    def __init__(
        self,
        cwd: str | None = None,
        default_output: str = "",
        shell_name: str = "mock",
    ):
        super().__init__(cwd)
        self._name = shell_name
        self._default_output = default_output
        self._responses: list[tuple[str, ShellResult]] = []
        self._call_log: list[ShellResult] = []
        self._directories: list[tuple[str, str, bool]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ShellResult]:
        """Every command this mock has received, in order."""
        return self._call_log

    @property
    def commands(self) -> list[str]:
        return [r.command for r in self._call_log]

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def directories_created(self) -> list[tuple[str, str, bool]]:
        """(path, mode, privileged) for every in_directory(create=...)."""
        return self._directories

    def set_response(
        self,
        prefix: str,
        stdout: str = "",
        return_code: int = 0,
        stderr: str = "",
    ) -> None:
        """Answer commands starting with ``prefix``. Later entries win."""
        self._responses.insert(
            0,
            (
                prefix,
                ShellResult(
                    command=prefix,
                    return_code=return_code,
                    stdout=stdout,
                    stderr=stderr,
                ),
            ),
        )

    def set_failure(self, prefix: str, stderr: str = "Mock failure", return_code: int = 1) -> None:
        """Make commands starting with ``prefix`` fail."""
        self.set_response(prefix, return_code=return_code, stderr=stderr)

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
        result = ShellResult(command=text, stdout=self._default_output)
        for prefix, canned in self._responses:
            if text.startswith(prefix):
                result = canned
                break
        recorded = result.model_copy(
            update={"command": text, "cwd": self.cwd, "privileged": privileged}
        )
        self._call_log.append(recorded)
        return recorded

    def _make_directory(self, path: str, mode: str, privileged: bool) -> None:
        self._directories.append((path, mode, privileged))

    def reset(self) -> None:
        """Clear call log and configured responses."""
        self._call_log.clear()
        self._responses.clear()
        self._directories.clear()

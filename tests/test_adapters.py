"""
Tests for the execution adapters — ShellResult, MockShell, LocalShell.
"""

import stat
import subprocess
import threading
from pathlib import Path

import pytest

from converge.adapters import LocalShell, MockShell, ShellResult
from converge.adapters.shell import command as command_mod
from converge.core.errors import CommandFailed, RemediationError


class TestShellResult:
    def test_ok(self):
        result = ShellResult(command="true", stdout="  done\n")
        assert result.ok
        assert result
        assert result.output == "done"
        assert result.check() is result

    def test_failure(self):
        result = ShellResult(command="false", return_code=2, stderr="boom\nreally boom\n")
        assert not result.ok
        assert not result
        with pytest.raises(CommandFailed) as exc_info:
            result.check()
        assert isinstance(exc_info.value, RemediationError)
        assert exc_info.value.result is result
        assert str(exc_info.value) == "Command failed (exit 2): false: really boom"


class TestMockShell:
    def test_records_commands(self):
        shell = MockShell()
        shell.run("nginx -v")
        shell.run_privileged(["useradd", "www"])

        assert shell.commands == ["nginx -v", "useradd www"]
        assert shell.call_count == 2
        assert not shell.call_log[0].privileged
        assert shell.call_log[1].privileged

    def test_default_success(self):
        result = MockShell(default_output="ok").run("anything")
        assert result.ok
        assert result.stdout == "ok"

    def test_configured_responses(self):
        shell = MockShell()
        shell.set_response("nginx -v", stderr="nginx version: nginx/1.25.3")
        shell.set_failure("nginx -t", stderr="syntax error")

        assert shell.run("nginx -v").stderr == "nginx version: nginx/1.25.3"
        failed = shell.run("nginx -t -c /etc/nginx.conf")
        assert failed.return_code == 1
        assert failed.command == "nginx -t -c /etc/nginx.conf"

    def test_later_response_wins(self):
        shell = MockShell()
        shell.set_response("pgrep", return_code=1)
        shell.set_response("pgrep nginx", stdout="123")

        assert shell.run("pgrep nginx").output == "123"
        assert shell.run("pgrep sshd").return_code == 1

    def test_reset(self):
        shell = MockShell()
        shell.set_failure("x")
        shell.run("x")
        shell.reset()
        assert shell.call_count == 0
        assert shell.run("x").ok


class TestInDirectory:
    def test_scopes_cwd(self):
        shell = MockShell(cwd="/srv")
        with shell.in_directory("/tmp/build") as path:
            assert path == "/tmp/build"
            shell.run("make")
        shell.run("ls")

        assert shell.call_log[0].cwd == "/tmp/build"
        assert shell.call_log[1].cwd == "/srv"

    def test_relative_nested(self):
        shell = MockShell(cwd="/src")
        with shell.in_directory("nginx-1.25.3"):
            with shell.in_directory("objs"):
                assert shell.cwd == "/src/nginx-1.25.3/objs"
            assert shell.cwd == "/src/nginx-1.25.3"
        assert shell.cwd == "/src"

    def test_restored_on_exception(self):
        shell = MockShell()
        with pytest.raises(RuntimeError):
            with shell.in_directory("/var/www"):
                raise RuntimeError("failed mid-block")
        assert shell.cwd is None

    def test_create_records_mode(self):
        shell = MockShell()
        with shell.in_directory("/opt/nginx/conf/vhosts", create="755", privileged=True):
            pass
        assert shell.directories_created == [("/opt/nginx/conf/vhosts", "755", True)]

    def test_scope_is_per_thread(self):
        shell = MockShell(cwd="/base")
        seen = []
        entered = threading.Event()
        done = threading.Event()

        def other():
            entered.wait(5)
            seen.append(shell.cwd)
            done.set()

        t = threading.Thread(target=other)
        t.start()
        with shell.in_directory("/elsewhere"):
            entered.set()
            done.wait(5)
        t.join()
        assert seen == ["/base"]


class _FakeRun:
    """Records subprocess.run calls and returns a canned result."""

    def __init__(self, returncode=0, stdout="", stderr="", raises=None):
        self.calls = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.raises = raises

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        if self.raises is not None:
            raise self.raises
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


class TestLocalShell:
    def test_string_command_uses_shell(self, monkeypatch):
        fake = _FakeRun(stdout="hello\n")
        monkeypatch.setattr(command_mod.subprocess, "run", fake)

        result = LocalShell(cwd="/srv").run("echo hello")
        argv, kwargs = fake.calls[0]
        assert argv == "echo hello"
        assert kwargs["shell"] is True
        assert kwargs["cwd"] == "/srv"
        assert result.output == "hello"
        assert result.cwd == "/srv"

    def test_privileged_uses_sudo(self, monkeypatch):
        fake = _FakeRun()
        monkeypatch.setattr(command_mod.subprocess, "run", fake)
        monkeypatch.setattr(command_mod, "_is_root", lambda: False)

        shell = LocalShell()
        shell.run_privileged("apt-get update")
        shell.run_privileged(["useradd", "www"])

        assert fake.calls[0][0] == ["sudo", "-n", "sh", "-c", "apt-get update"]
        assert fake.calls[0][1]["shell"] is False
        assert fake.calls[1][0] == ["sudo", "-n", "useradd", "www"]

    def test_privileged_as_root(self, monkeypatch):
        fake = _FakeRun()
        monkeypatch.setattr(command_mod.subprocess, "run", fake)
        monkeypatch.setattr(command_mod, "_is_root", lambda: True)

        result = LocalShell().run_privileged(["useradd", "www"])
        assert fake.calls[0][0] == ["useradd", "www"]
        assert result.privileged

    def test_non_zero_exit_does_not_raise(self, monkeypatch):
        monkeypatch.setattr(command_mod.subprocess, "run", _FakeRun(returncode=3, stderr="nope"))
        result = LocalShell().run("false")
        assert result.return_code == 3
        assert result.stderr == "nope"

    def test_timeout(self, monkeypatch):
        fake = _FakeRun(raises=subprocess.TimeoutExpired("sleep 10", 1))
        monkeypatch.setattr(command_mod.subprocess, "run", fake)

        result = LocalShell(default_timeout=1).run("sleep 10")
        assert result.return_code == command_mod.TIMEOUT_RETURN_CODE
        assert fake.calls[0][1]["timeout"] == 1

    def test_missing_binary(self, monkeypatch):
        monkeypatch.setattr(command_mod.subprocess, "run", _FakeRun(raises=FileNotFoundError("nope")))
        result = LocalShell().run(["no-such-binary"])
        assert result.return_code == 127

    def test_env_merged(self, monkeypatch):
        fake = _FakeRun()
        monkeypatch.setattr(command_mod.subprocess, "run", fake)
        LocalShell().run("make", env={"CFLAGS": "-O2"})
        env = fake.calls[0][1]["env"]
        assert env["CFLAGS"] == "-O2"
        assert "PATH" in env

    def test_in_directory_creates(self, tmp_path: Path):
        shell = LocalShell()
        target = tmp_path / "build" / "nginx"
        with shell.in_directory(target, create="700") as path:
            assert shell.cwd == path
        assert target.is_dir()
        assert stat.S_IMODE(target.stat().st_mode) == 0o700

    def test_name(self):
        assert LocalShell().name == "local"
        assert MockShell().name == "mock"

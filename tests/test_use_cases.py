"""
Tests for the use-case layer — run_meet and the recipe inspection helpers.
"""

import threading
from pathlib import Path

import pytest

from converge.adapters.mock import MockShell
from converge.core.persistence.audit import AuditWriter
from converge.core.use_cases.check import check_recipes, list_dependencies, resolve_order
from converge.core.use_cases.meet import run_meet


@pytest.fixture
def config(tmp_path: Path) -> Path:
    path = tmp_path / "converge.yml"
    path.write_text("platform: linux\nvars:\n  domain: example.org\n", encoding="utf-8")
    return path


class TestRunMeet:
    def test_converges_with_injected_registry(self, registry, config):
        shell = MockShell()
        d = registry.dep("vhost")
        d.var("domain")
        d.met(lambda ctx: ctx.shell.run(f"test -f /etc/nginx/vhosts/{ctx.var('domain')}.conf").ok)

        result = run_meet(["vhost"], config_path=config, registry=registry, shell=shell)
        assert result.error is None
        assert result.exit_code == 0
        assert shell.commands == ["test -f /etc/nginx/vhosts/example.org.conf"]

    def test_overrides_beat_settings(self, registry, config):
        seen = []
        registry.dep("vhost").met(lambda ctx: seen.append(ctx.var("domain")) or True)

        run_meet(
            ["vhost"], {"domain": "override.net"},
            config_path=config, registry=registry, shell=MockShell(),
        )
        assert seen == ["override.net"]

    def test_writes_audit_entry(self, registry, config):
        registry.dep("noop")
        result = run_meet(["noop"], config_path=config, registry=registry, mock_mode=True)

        entries = AuditWriter(state_dir=result.settings.state_path).read_all()
        assert len(entries) == 1
        assert entries[0].roots == ["noop"]
        assert entries[0].context == {"shell": "mock"}

    def test_static_error(self, registry, config):
        registry.dep("a", requires=["b"])
        registry.dep("b", requires=["a"])

        result = run_meet(["a"], config_path=config, registry=registry, shell=MockShell())
        assert result.error_kind == "CycleError"
        assert result.report is None
        assert result.exit_code == 1
        assert result.to_dict() == {"error": result.error, "error_kind": "CycleError"}

    def test_bad_config(self, tmp_path):
        bad = tmp_path / "converge.yml"
        bad.write_text("jobs: 0\n", encoding="utf-8")
        result = run_meet(["x"], config_path=bad)
        assert result.error_kind == "ConfigError"

    def test_cancelled_before_start(self, registry, config):
        registry.dep("a").met(lambda ctx: True)
        cancel = threading.Event()
        cancel.set()

        result = run_meet(
            ["a"], config_path=config, registry=registry,
            shell=MockShell(), cancel_event=cancel,
        )
        assert result.report.cancelled
        assert result.exit_code == 1

    def test_platform_override(self, registry, config):
        registry.dep("launchd", only_on=["osx"]).met(lambda ctx: False)

        result = run_meet(
            ["launchd"], config_path=config, registry=registry,
            shell=MockShell(), platform="darwin",
        )
        assert result.platform == "osx"
        assert result.report.failed == 1


class TestInspection:
    def test_list(self, registry, config):
        registry.dep("b", kind="pkg", only_on=["linux"])
        registry.dep("a", requires=["b"])

        entries = list_dependencies(config_path=config, registry=registry).entries()
        assert entries[0] == {
            "name": "a", "kind": "dep", "requires": ["b"], "platforms": [], "description": "",
        }
        assert entries[1]["platforms"] == ["linux"]

    def test_resolve_order(self, registry, config):
        registry.dep("a", requires=["b"])
        registry.dep("b")

        result = resolve_order(["a"], config_path=config, registry=registry)
        assert result.graph.order == ["b", "a"]
        assert result.to_dict()["platform"] == "linux"

    def test_resolve_unknown(self, registry, config):
        result = resolve_order(["ghost"], config_path=config, registry=registry)
        assert result.error_kind == "UnknownDependencyError"

    def test_check_reports_problems(self, registry, config):
        registry.dep("a", requires=["ghost"])
        registry.dep("mac only").on("osx").meet(lambda ctx: None)
        registry.dep("web").var("flavour", default="lighttpd", choices=["nginx", "apache"])

        result = check_recipes(config_path=config, registry=registry)
        assert not result.valid
        assert result.dependency_count == 3
        assert result.errors == ["'a' requires unknown dependency 'ghost'"]
        assert any("'mac only' cannot run on linux" in w for w in result.warnings)
        assert any("'flavour' default 'lighttpd'" in w for w in result.warnings)

    def test_check_empty(self, registry, config):
        result = check_recipes(config_path=config, registry=registry)
        assert result.valid
        assert result.warnings

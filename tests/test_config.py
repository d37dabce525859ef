"""
Tests for settings loading and recipe discovery.
"""

import textwrap
from pathlib import Path

import pytest

from converge.core.config.loader import (
    ConfigError,
    Settings,
    find_config_file,
    load_settings,
)
from converge.core.config.recipe_loader import (
    RecipeLoadError,
    discover_recipe_files,
    load_recipe_file,
    load_recipes,
)
from converge.core.registry import DependencyRegistry


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestLoadSettings:
    def test_full_file(self, tmp_path: Path):
        config = _write(
            tmp_path / "converge.yml",
            """\
            recipes: [deps, extra/web.py]
            vars:
              nginx_version: 1.25.3
              domain: example.org
            platform: darwin
            timeout: 300
            jobs: 4
            state_dir: .state
            """,
        )

        settings = load_settings(config)
        root = tmp_path.resolve()
        assert settings.recipes == ["deps", "extra/web.py"]
        assert settings.vars["domain"] == "example.org"
        assert settings.platform == "osx"
        assert settings.timeout == 300
        assert settings.jobs == 4
        assert settings.recipe_paths == [root / "deps", root / "extra" / "web.py"]
        assert settings.state_path == root / ".state"

    def test_empty_file_uses_defaults(self, tmp_path: Path):
        config = _write(tmp_path / "converge.yml", "")
        settings = load_settings(config)
        assert settings.recipes == ["deps"]
        assert settings.jobs == 1
        assert settings.state_path == tmp_path.resolve() / ".converge"

    def test_no_file_found(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings == Settings(base_dir=Path.cwd())
        assert settings.recipe_paths == [Path.cwd() / "deps"]

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        config = _write(tmp_path / "converge.yml", "vars: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config)

    def test_not_a_mapping(self, tmp_path: Path):
        config = _write(tmp_path / "converge.yml", "- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_settings(config)

    @pytest.mark.parametrize(
        "content",
        ["jobs: 0\n", "timeout: -5\n", "platform: plan9\n", "recipes: 42\n"],
    )
    def test_schema_violations(self, tmp_path: Path, content: str):
        config = _write(tmp_path / "converge.yml", content)
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(config)

    def test_find_walks_upward(self, tmp_path: Path):
        config = _write(tmp_path / "converge.yml", "jobs: 2\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == config.resolve()


class TestRecipeLoader:
    def test_discover_skips_private_files(self, tmp_path: Path):
        deps = tmp_path / "deps"
        _write(deps / "web.py", "def register(deps):\n    pass\n")
        _write(deps / "_helpers.py", "")
        _write(deps / "db.py", "def register(deps):\n    pass\n")
        _write(deps / "notes.txt", "")

        files = discover_recipe_files([deps, tmp_path / "missing"])
        assert [f.name for f in files] == ["db.py", "web.py"]

    def test_load_registers_dependencies(self, tmp_path: Path):
        recipe = _write(
            tmp_path / "deps" / "nginx.py",
            """\
            def register(deps):
                d = deps.dep("webserver installed", kind="nginx")

                @d.met
                def installed(ctx):
                    return ctx.shell.run("nginx -v").ok

                deps.dep("www user and group")
            """,
        )

        registry = DependencyRegistry()
        assert load_recipe_file(recipe, registry) == 2
        assert registry.names() == ["webserver installed", "www user and group"]
        assert registry.get("webserver installed").kind == "nginx"

    def test_load_recipes_from_directories(self, tmp_path: Path):
        _write(tmp_path / "a" / "one.py", "def register(deps):\n    deps.dep('one')\n")
        _write(tmp_path / "b" / "two.py", "def register(deps):\n    deps.dep('two')\n")

        registry = load_recipes([tmp_path / "a", tmp_path / "b"])
        assert sorted(registry.names()) == ["one", "two"]

    def test_missing_register(self, tmp_path: Path):
        recipe = _write(tmp_path / "bad.py", "X = 1\n")
        with pytest.raises(RecipeLoadError, match="no register"):
            load_recipe_file(recipe, DependencyRegistry())

    def test_import_error(self, tmp_path: Path):
        recipe = _write(tmp_path / "broken.py", "def register(deps)\n")
        with pytest.raises(RecipeLoadError, match="Error importing"):
            load_recipe_file(recipe, DependencyRegistry())

    def test_duplicate_across_files(self, tmp_path: Path):
        _write(tmp_path / "deps" / "a.py", "def register(deps):\n    deps.dep('same')\n")
        _write(tmp_path / "deps" / "b.py", "def register(deps):\n    deps.dep('same')\n")
        with pytest.raises(RecipeLoadError, match="declared twice"):
            load_recipes([tmp_path / "deps"])

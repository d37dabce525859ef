"""
Meet use case — converge one or more dependencies.

This is the top-level orchestrator: it loads settings and recipes,
builds the run's variable store, resolves the prerequisite graph,
runs it, and records the outcome. The full vertical slice from
"converge meet X" to an audited report.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from converge.adapters.base import Shell
from converge.adapters.mock import MockShell
from converge.adapters.shell.command import LocalShell
from converge.core.config.loader import ConfigError, Settings, load_settings
from converge.core.config.recipe_loader import RecipeLoadError, load_recipes
from converge.core.context import RunContext
from converge.core.engine.platform import current_platform
from converge.core.engine.resolver import DependencyGraph, resolve
from converge.core.engine.runner import ConvergenceReport, ConvergenceRunner
from converge.core.engine.variables import VariableStore
from converge.core.errors import CycleError, UnknownDependencyError
from converge.core.models.platform import Platform
from converge.core.persistence.audit import AuditEntry, AuditWriter
from converge.core.persistence.var_file import default_vars_path, load_vars, save_vars
from converge.core.registry import DependencyRegistry

logger = logging.getLogger(__name__)


@dataclass
class MeetResult:
    """Result of a meet request."""

    report: ConvergenceReport | None = None
    graph: DependencyGraph | None = None
    settings: Settings | None = None
    platform: Platform | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return 1
        return self.report.exit_code

    def to_dict(self) -> dict:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result

        result["platform"] = self.platform.value if self.platform else None
        if self.graph:
            result["order"] = self.graph.order
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def load_environment(
    config_path: Path | None = None,
    registry: DependencyRegistry | None = None,
) -> tuple[Settings, DependencyRegistry]:
    """Load settings and, unless given, the recipes they point at.

    Raises:
        ConfigError: converge.yml is invalid.
        RecipeLoadError: A recipe file failed to load.
    """
    settings = load_settings(config_path)
    if registry is None:
        registry = load_recipes(settings.recipe_paths)
    return settings, registry


def pick_platform(requested: str | None, settings: Settings) -> Platform:
    """Explicit flag > settings > host detection."""
    value = requested or settings.platform
    return Platform.parse(value) if value else current_platform()


def run_meet(
    names: Sequence[str],
    overrides: dict[str, Any] | None = None,
    config_path: Path | None = None,
    platform: str | None = None,
    timeout: float | None = None,
    jobs: int | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    save_overrides: bool = False,
    use_saved_vars: bool = False,
    registry: DependencyRegistry | None = None,
    shell: Shell | None = None,
    cancel_event: threading.Event | None = None,
) -> MeetResult:
    """Converge the named dependencies.

    Args:
        names: Root dependency names.
        overrides: Command-line ``key=value`` variables.
        config_path: Optional explicit path to converge.yml.
        platform: Platform override (default: settings, then host).
        timeout: Per-call timeout override in seconds.
        jobs: Worker thread override.
        dry_run: Check only; never run meet actions.
        mock_mode: Use a MockShell instead of the local shell.
        save_overrides: Persist ``overrides`` for later runs.
        use_saved_vars: Start from previously saved variables.
        registry: Pre-loaded registry (skips recipe loading).
        shell: Pre-configured execution adapter.
        cancel_event: Set to stop starting new nodes.

    Returns:
        MeetResult with the convergence report, or an error.
    """
    result = MeetResult()
    overrides = dict(overrides or {})

    # ── Settings + recipes ───────────────────────────────────────
    try:
        settings, registry = load_environment(config_path, registry)
        result.settings = settings
        result.platform = pick_platform(platform, settings)
    except (ConfigError, RecipeLoadError, ValueError) as e:
        result.error = str(e)
        result.error_kind = type(e).__name__
        return result

    # ── Variables: saved < settings < command line ───────────────
    store = VariableStore()
    vars_path = default_vars_path(settings.state_path)
    if use_saved_vars:
        for name, value in load_vars(vars_path).items():
            store.set(name, value)
    for name, value in settings.vars.items():
        store.set(name, value)
    for name, value in overrides.items():
        store.set(name, value)

    # ── Resolve (static checks) ──────────────────────────────────
    try:
        graph = resolve(registry, names, result.platform)
    except (UnknownDependencyError, CycleError) as e:
        result.error = str(e)
        result.error_kind = type(e).__name__
        return result
    result.graph = graph

    # ── Run ──────────────────────────────────────────────────────
    if shell is None:
        shell = MockShell() if mock_mode else LocalShell(cwd=settings.base_dir)

    context = RunContext(
        vars=store,
        platform=result.platform,
        shell=shell,
        dry_run=dry_run,
    )
    runner = ConvergenceRunner(
        context,
        timeout=timeout if timeout is not None else settings.timeout,
        jobs=jobs if jobs is not None else settings.jobs,
        dry_run=dry_run,
        cancel_event=cancel_event,
    )
    report = runner.run(graph)
    result.report = report
    logger.debug("Variables after run %s: %r", report.run_id, store.resolved())

    # ── Persist ──────────────────────────────────────────────────
    AuditWriter(state_dir=settings.state_path).write(
        AuditEntry.from_report(report, shell=shell.name)
    )
    if save_overrides and overrides:
        save_vars(overrides, vars_path)
        logger.info("Saved %d override(s) to %s", len(overrides), vars_path)

    return result

"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from converge.adapters.mock import MockShell
from converge.core.context import RunContext
from converge.core.engine.resolver import resolve
from converge.core.engine.runner import ConvergenceReport, ConvergenceRunner
from converge.core.engine.variables import VariableStore
from converge.core.models.platform import Platform
from converge.core.registry import DepBuilder, DependencyRegistry


class FakeSystem:
    """In-memory stand-in for host state.

    ``met?`` checks membership in ``present``; ``meet`` adds to it
    (unless told not to). Every call is recorded so tests can assert
    on ordering and invocation counts.
    """

    def __init__(self, present=()):
        self.present: set[str] = set(present)
        self.checks: list[str] = []
        self.meets: list[str] = []

    def met_for(self, name: str) -> Callable:
        def met(ctx):
            self.checks.append(name)
            return name in self.present

        return met

    def meet_for(self, name: str, achieves: bool = True) -> Callable:
        def meet(ctx):
            self.meets.append(name)
            if achieves:
                self.present.add(name)

        return meet

    def declare(
        self,
        registry: DependencyRegistry,
        name: str,
        requires=(),
        achieves: bool = True,
        **kwargs,
    ) -> DepBuilder:
        d = registry.dep(name, requires=requires, **kwargs)
        d.met(self.met_for(name))
        d.meet(self.meet_for(name, achieves))
        return d


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def registry() -> DependencyRegistry:
    return DependencyRegistry()


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def shell() -> MockShell:
    return MockShell()


@pytest.fixture
def make_context(shell: MockShell) -> Callable[..., RunContext]:
    """Factory for a fresh run context (new variable store each call)."""

    def _make(platform: Platform = Platform.LINUX, **values) -> RunContext:
        return RunContext(vars=VariableStore(values), platform=platform, shell=shell)

    return _make


@pytest.fixture
def converge(registry: DependencyRegistry, make_context) -> Callable[..., ConvergenceReport]:
    """Resolve ``roots`` and run them in a fresh context."""

    def _run(*roots, context: RunContext | None = None, **runner_kwargs) -> ConvergenceReport:
        context = context or make_context()
        graph = resolve(registry, roots, context.platform)
        return ConvergenceRunner(context, **runner_kwargs).run(graph)

    return _run

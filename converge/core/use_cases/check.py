"""
Recipe inspection use cases — list, resolve, and statically check.

None of these run a met? predicate or a meet action.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from converge.core.config.loader import ConfigError
from converge.core.config.recipe_loader import RecipeLoadError
from converge.core.engine.resolver import DependencyGraph, resolve
from converge.core.errors import CycleError, UnknownDependencyError
from converge.core.models.platform import Platform
from converge.core.registry import DependencyRegistry
from converge.core.use_cases.meet import load_environment, pick_platform


@dataclass
class ListResult:
    """Declared dependencies."""

    registry: DependencyRegistry | None = None
    error: str | None = None

    def entries(self) -> list[dict]:
        if self.registry is None:
            return []
        return [
            {
                "name": d.name,
                "kind": d.kind,
                "requires": [r.key for r in d.requires],
                "platforms": d.platforms,
                "description": d.description,
            }
            for d in sorted(self.registry, key=lambda d: d.name)
        ]

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"dependencies": self.entries()}


def list_dependencies(
    config_path: Path | None = None,
    registry: DependencyRegistry | None = None,
) -> ListResult:
    """Load recipes and list what they declare."""
    result = ListResult()
    try:
        _settings, result.registry = load_environment(config_path, registry)
    except (ConfigError, RecipeLoadError) as e:
        result.error = str(e)
    return result


@dataclass
class ResolveResult:
    """Satisfaction order for a request, or the static error."""

    graph: DependencyGraph | None = None
    platform: Platform | None = None
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "error_kind": self.error_kind}
        assert self.graph is not None
        return self.graph.to_dict()


def resolve_order(
    names: Sequence[str],
    config_path: Path | None = None,
    platform: str | None = None,
    registry: DependencyRegistry | None = None,
) -> ResolveResult:
    """Resolve ``names`` without running anything."""
    result = ResolveResult()
    try:
        settings, registry = load_environment(config_path, registry)
        result.platform = pick_platform(platform, settings)
        result.graph = resolve(registry, names, result.platform)
    except (ConfigError, RecipeLoadError, UnknownDependencyError, CycleError, ValueError) as e:
        result.error = str(e)
        result.error_kind = type(e).__name__
    return result


@dataclass
class RecipeCheckResult:
    """Static validation of every declared dependency."""

    valid: bool = False
    platform: Platform | None = None
    dependency_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "platform": self.platform.value if self.platform else None,
            "dependency_count": self.dependency_count,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def check_recipes(
    config_path: Path | None = None,
    platform: str | None = None,
    registry: DependencyRegistry | None = None,
) -> RecipeCheckResult:
    """Resolve every declared dependency and report static problems.

    Errors: unknown prerequisites and cycles (these would abort any
    run touching them). Warnings: dependencies with no variant for the
    platform, and variables declared with a default outside their own
    choices.
    """
    result = RecipeCheckResult()

    try:
        settings, registry = load_environment(config_path, registry)
        result.platform = pick_platform(platform, settings)
    except (ConfigError, RecipeLoadError, ValueError) as e:
        result.errors.append(str(e))
        return result

    result.dependency_count = len(registry)
    if not len(registry):
        result.warnings.append("No dependencies declared. Check the 'recipes' setting.")

    errors: dict[str, None] = {}
    warnings: dict[str, None] = {}
    for definition in registry:
        try:
            graph = resolve(registry, [definition.name], result.platform)
        except (UnknownDependencyError, CycleError) as e:
            errors[str(e)] = None
            continue
        node = graph.nodes[definition.name]
        if node.unsupported:
            warnings[
                f"'{definition.name}' cannot run on {result.platform}: {node.unsupported}"
            ] = None

        for declaration in definition.vars:
            default = declaration.default
            if (
                declaration.choices is not None
                and not declaration.required
                and not callable(default)
                and default not in declaration.choices
            ):
                warnings[
                    f"'{definition.name}' var '{declaration.name}' default "
                    f"{default!r} is not one of its choices"
                ] = None

    result.errors.extend(errors)
    result.warnings.extend(warnings)
    result.valid = not result.errors
    return result

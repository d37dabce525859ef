"""
Dependency model — the unit of convergence.

A DependencyDefinition is what a recipe declares: a name, the
prerequisites it needs first, a met? predicate, a meet action,
before/after hooks, variable declarations, and optional
platform-scoped variants. Its ``kind`` names an optional
DependencyKind whose template and helpers it inherits.

Every callable receives exactly one argument, the node's RunContext.
These are plain dataclasses rather than pydantic models because they
carry callables.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from converge.core.models.platform import Platform

if TYPE_CHECKING:
    from converge.core.context import RunContext

Predicate = Callable[["RunContext"], Any]
Action = Callable[["RunContext"], Any]

MISSING: Any = type("_Missing", (), {"__repr__": lambda self: "MISSING"})()
"""Sentinel for "no default given" (None is a legal default)."""


# ── met? outcome ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Check:
    """Normalized outcome of a met? predicate."""

    satisfied: bool
    diagnostic: str = ""

    @classmethod
    def coerce(cls, value: Any) -> Check:
        """Turn whatever a met? predicate returned into a Check.

        ``None`` and falsy values are unmet; a Check passes through;
        anything else is judged by truthiness.
        """
        if isinstance(value, Check):
            return value
        return cls(satisfied=bool(value))

    def __bool__(self) -> bool:
        return self.satisfied


def met(diagnostic: str = "") -> Check:
    """Satisfied, with an optional explanation."""
    return Check(True, diagnostic)


def unmet(diagnostic: str = "") -> Check:
    """Unsatisfied, with an optional explanation."""
    return Check(False, diagnostic)


# ── Declarations ────────────────────────────────────────────────────


@dataclass(frozen=True)
class VarDeclaration:
    """A variable a dependency reads.

    ``default`` may be a plain value or a callable taking the
    VariableStore; callables are evaluated lazily on first access.
    """

    name: str
    default: Any = MISSING
    choices: tuple[Any, ...] | None = None
    description: str = ""

    @property
    def required(self) -> bool:
        return self.default is MISSING


@dataclass(frozen=True)
class Requirement:
    """A reference to a prerequisite, optionally parameterized."""

    name: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, value: str | Requirement | tuple[str, Mapping[str, Any]]) -> Requirement:
        """Build a Requirement from a name, a (name, params) pair, or itself."""
        if isinstance(value, Requirement):
            return value
        if isinstance(value, str):
            return cls(value)
        name, params = value
        return cls(name, tuple(sorted(dict(params).items())))

    @property
    def key(self) -> str:
        """Node identity: the name, plus sorted parameters if any."""
        if not self.params:
            return self.name
        args = ", ".join(f"{k}={v!r}" for k, v in self.params)
        return f"{self.name}({args})"

    @property
    def param_dict(self) -> dict[str, Any]:
        return dict(self.params)

    def __str__(self) -> str:
        return self.key


@dataclass
class Variant:
    """Platform-scoped override of a dependency's body."""

    requires: list[Requirement] = field(default_factory=list)
    met: Predicate | None = None
    meet: Action | None = None
    before: list[Action] = field(default_factory=list)
    after: list[Action] = field(default_factory=list)
    vars: list[VarDeclaration] = field(default_factory=list)


@dataclass
class DependencyDefinition:
    """A named unit of desired system state."""

    name: str
    kind: str = "dep"
    requires: list[Requirement] = field(default_factory=list)
    met: Predicate | None = None
    meet: Action | None = None
    before: list[Action] = field(default_factory=list)
    after: list[Action] = field(default_factory=list)
    vars: list[VarDeclaration] = field(default_factory=list)
    variants: dict[Platform, Variant] = field(default_factory=dict)
    only_on: frozenset[Platform] = frozenset()
    description: str = ""

    def __post_init__(self) -> None:
        self.requires = [Requirement.of(r) for r in self.requires]
        self.only_on = frozenset(Platform.parse(p) for p in self.only_on)
        self.variants = {Platform.parse(p): v for p, v in self.variants.items()}

    @property
    def platforms(self) -> list[str]:
        """Platforms this definition mentions (restriction or variants)."""
        names = {p.value for p in self.only_on} | {p.value for p in self.variants}
        return sorted(names)

    def variant(self, platform: Platform) -> Variant:
        """Get or create the variant for a platform."""
        return self.variants.setdefault(platform, Variant())


@dataclass
class DependencyKind:
    """A kind template shared by every dependency declared with it.

    The template body supplies prerequisites, met?/meet, hooks and
    variables that a dependency of this kind does not declare itself;
    helpers are reachable from its callables as ``ctx.helpers.<name>``.
    """

    name: str
    template: Variant = field(default_factory=Variant)
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)

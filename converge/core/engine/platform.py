"""
Platform selector — which OS-scoped body of a dependency applies here.

Selection rules:
    only_on restriction excludes host   →  NotApplicable
    no variants                         →  unscoped body as-is
    variant for host                    →  unscoped body extended by it
    no variant for host, but the unscoped
    body defines every slot (met?, meet)
    that some variant defines           →  unscoped body (fallback)
    otherwise                           →  NoMatch

Extension: prerequisites are unscoped + variant (duplicates dropped),
met?/meet are the variant's when it has them, hooks run unscoped first
then the variant's, and variant variable declarations win by name.
A kind template is layered under the unscoped body the same way.
"""

from __future__ import annotations

import logging
import platform as _platform
from dataclasses import dataclass, field

from converge.core.models.dependency import (
    Action,
    DependencyDefinition,
    DependencyKind,
    Predicate,
    Requirement,
    VarDeclaration,
    Variant,
)
from converge.core.models.platform import Platform

logger = logging.getLogger(__name__)

_SYSTEM_MAP = {
    "linux": Platform.LINUX,
    "darwin": Platform.OSX,
    "freebsd": Platform.BSD,
    "openbsd": Platform.BSD,
    "netbsd": Platform.BSD,
    "windows": Platform.WINDOWS,
}


def current_platform() -> Platform:
    """Detect the host platform from ``platform.system()``.

    Unknown kernels fall back to linux, the common case for
    container and CI hosts.
    """
    system = _platform.system().lower()
    detected = _SYSTEM_MAP.get(system)
    if detected is None:
        logger.warning("Unrecognized system '%s', assuming linux", system)
        return Platform.LINUX
    return detected


@dataclass
class SelectedBody:
    """A definition flattened for one platform."""

    requires: list[Requirement] = field(default_factory=list)
    met: Predicate | None = None
    meet: Action | None = None
    before: list[Action] = field(default_factory=list)
    after: list[Action] = field(default_factory=list)
    vars: list[VarDeclaration] = field(default_factory=list)
    variant: Platform | None = None


@dataclass(frozen=True)
class NoMatch:
    """No body applies on this platform; the node cannot run here."""

    reason: str


@dataclass(frozen=True)
class NotApplicable:
    """The dependency is restricted to other platforms."""

    allowed: tuple[Platform, ...]


Selection = SelectedBody | NoMatch | NotApplicable


def select_variant(
    definition: DependencyDefinition,
    current: Platform,
    kind: DependencyKind | None = None,
) -> Selection:
    """Resolve the body of ``definition`` that applies on ``current``.

    A kind template, when given, sits underneath the unscoped body.
    """
    if definition.only_on and current not in definition.only_on:
        return NotApplicable(tuple(sorted(definition.only_on)))

    base = SelectedBody(
        requires=list(definition.requires),
        met=definition.met,
        meet=definition.meet,
        before=list(definition.before),
        after=list(definition.after),
        vars=list(definition.vars),
    )
    if kind is not None:
        base = _extend(_body_of(kind.template), base)

    if not definition.variants:
        return base

    variant = definition.variants.get(current)
    if variant is None:
        missing = _slots_without_fallback(base, definition)
        if missing:
            scoped = ", ".join(sorted(p.value for p in definition.variants))
            return NoMatch(
                f"{' and '.join(missing)} only declared for: {scoped}"
            )
        logger.debug("'%s' has no %s variant, using unscoped body", definition.name, current)
        return base

    selected = _extend(base, _body_of(variant))
    selected.variant = current
    return selected


def _body_of(variant: Variant) -> SelectedBody:
    return SelectedBody(
        requires=list(variant.requires),
        met=variant.met,
        meet=variant.meet,
        before=list(variant.before),
        after=list(variant.after),
        vars=list(variant.vars),
    )


def _extend(lower: SelectedBody, upper: SelectedBody) -> SelectedBody:
    """Layer ``upper`` over ``lower``."""
    requires = list(lower.requires)
    for req in upper.requires:
        if req not in requires:
            requires.append(req)

    merged_vars = {v.name: v for v in lower.vars}
    for v in upper.vars:
        merged_vars[v.name] = v

    return SelectedBody(
        requires=requires,
        met=upper.met or lower.met,
        meet=upper.meet or lower.meet,
        before=lower.before + upper.before,
        after=lower.after + upper.after,
        vars=list(merged_vars.values()),
    )


def _slots_without_fallback(base: SelectedBody, definition: DependencyDefinition) -> list[str]:
    """Callable slots some variant fills that the unscoped body leaves empty."""
    missing = []
    variants = definition.variants.values()
    if base.met is None and any(v.met for v in variants):
        missing.append("met?")
    if base.meet is None and any(v.meet for v in variants):
        missing.append("meet")
    return missing

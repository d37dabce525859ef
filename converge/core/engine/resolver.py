"""
Dependency graph resolver — static expansion of the prerequisite graph.

Depth-first from each root: select the node's platform body, record
its prerequisite keys, recurse. Post-order insertion gives a
topological order with prerequisites strictly before dependents.

Static checks happen here, before anything runs:
    - unknown names          → UnknownDependencyError (also in bodies
                               that are not expanded on this platform)
    - prerequisite cycles    → CycleError (full closed path)

Per-node platform problems do NOT fail resolution: the node is kept
with ``unsupported`` (no matching variant) or ``platform_skip``
(restricted to other platforms) and the runner records the outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from converge.core.errors import CycleError
from converge.core.models.dependency import (
    Action,
    DependencyDefinition,
    Predicate,
    Requirement,
    VarDeclaration,
)
from converge.core.models.platform import Platform
from converge.core.registry import DependencyRegistry
from converge.core.engine.platform import NoMatch, NotApplicable, select_variant

logger = logging.getLogger(__name__)


@dataclass
class ResolvedNode:
    """A dependency flattened for one platform and one set of parameters."""

    key: str
    name: str
    kind: str = "dep"
    params: dict[str, Any] = field(default_factory=dict)
    requires: list[str] = field(default_factory=list)
    met: Predicate | None = None
    meet: Action | None = None
    before: list[Action] = field(default_factory=list)
    after: list[Action] = field(default_factory=list)
    vars: list[VarDeclaration] = field(default_factory=list)
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)
    unsupported: str | None = None
    platform_skip: bool = False

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "kind": self.kind,
            "params": {k: repr(v) for k, v in self.params.items()},
            "requires": list(self.requires),
            "unsupported": self.unsupported,
            "platform_skip": self.platform_skip,
        }


@dataclass
class DependencyGraph:
    """Resolved, acyclic prerequisite graph."""

    platform: Platform
    roots: list[str] = field(default_factory=list)
    nodes: dict[str, ResolvedNode] = field(default_factory=dict)

    @property
    def order(self) -> list[str]:
        """Topological order: prerequisites strictly before dependents."""
        return list(self.nodes)

    def prerequisites(self, key: str) -> list[str]:
        return list(self.nodes[key].requires)

    def dependents(self, key: str, transitive: bool = False) -> list[str]:
        """Nodes requiring ``key`` (directly, or through any chain)."""
        direct = [k for k, n in self.nodes.items() if key in n.requires]
        if not transitive:
            return direct
        found: dict[str, None] = {}
        pending = list(direct)
        while pending:
            current = pending.pop()
            if current in found:
                continue
            found[current] = None
            pending.extend(k for k, n in self.nodes.items() if current in n.requires)
        return [k for k in self.nodes if k in found]

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, key: object) -> bool:
        return key in self.nodes

    def __iter__(self) -> Iterator[ResolvedNode]:
        return iter(self.nodes.values())

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "roots": list(self.roots),
            "order": self.order,
            "nodes": [n.to_dict() for n in self.nodes.values()],
        }


def resolve(
    registry: DependencyRegistry,
    roots: Iterable[Any],
    platform: Platform,
) -> DependencyGraph:
    """Build the transitive prerequisite graph for ``roots``.

    Args:
        registry: Declared dependencies.
        roots: Root names (or Requirement-like values).
        platform: Host platform used for variant selection.

    Returns:
        DependencyGraph in topological order.

    Raises:
        UnknownDependencyError: A root or prerequisite is not declared.
        CycleError: A prerequisite cycle exists.
    """
    graph = DependencyGraph(platform=platform)
    in_progress: list[str] = []

    def visit(req: Requirement, required_by: str | None) -> str:
        key = req.key
        if key in graph.nodes:
            return key
        if key in in_progress:
            start = in_progress.index(key)
            raise CycleError([*in_progress[start:], key])

        definition = registry.get(req.name, required_by=required_by)
        _check_declared(registry, definition, key)
        kind = registry.kind_of(definition)
        node = ResolvedNode(
            key=key,
            name=definition.name,
            kind=definition.kind,
            params=req.param_dict,
            helpers=dict(kind.helpers) if kind else {},
        )

        selection = select_variant(definition, platform, kind)
        if isinstance(selection, NotApplicable):
            node.platform_skip = True
            graph.nodes[key] = node
            return key
        if isinstance(selection, NoMatch):
            node.unsupported = selection.reason
            graph.nodes[key] = node
            return key

        node.met = selection.met
        node.meet = selection.meet
        node.before = selection.before
        node.after = selection.after
        node.vars = selection.vars

        in_progress.append(key)
        try:
            for prereq in selection.requires:
                prereq_key = visit(prereq, key)
                if prereq_key not in node.requires:
                    node.requires.append(prereq_key)
        finally:
            in_progress.pop()

        graph.nodes[key] = node
        return key

    for root in roots:
        root_key = visit(Requirement.of(root), None)
        if root_key not in graph.roots:
            graph.roots.append(root_key)

    logger.debug(
        "Resolved %d node(s) for %s on %s: %s",
        len(graph), graph.roots, platform, graph.order,
    )
    return graph


def _check_declared(
    registry: DependencyRegistry,
    definition: DependencyDefinition,
    key: str,
) -> None:
    """Every prerequisite name a definition mentions must be declared.

    Covers its kind template and variants for other platforms too, so
    a typo surfaces even where that body is never expanded.
    """
    bodies = [definition, *definition.variants.values()]
    kind = registry.kind_of(definition)
    if kind is not None:
        bodies.append(kind.template)
    for body in bodies:
        for req in body.requires:
            registry.get(req.name, required_by=key)

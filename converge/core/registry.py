"""
Dependency registry — the declaration interface recipes write against.

Recipes are plain Python modules exposing ``register(deps)``. The
registry hands them builders whose decorator methods attach the
met?/meet/hook callables:

    def register(deps):
        d = deps.dep("webserver running", kind="nginx",
                     requires=["webserver configured"])

        @d.met
        def running(ctx):
            return ctx.shell.run("pgrep nginx").ok

        @d.on("linux").meet
        def start(ctx):
            ctx.shell.run_privileged("/etc/init.d/nginx start").check()

A kind shares a template and helpers across its dependencies:

    k = deps.kind("nginx")

    @k.helper
    def nginx_conf(ctx):
        return Path(ctx.var("nginx_prefix")) / "conf/nginx.conf"

A builder registers its definition immediately and mutates it in
place, so declaration order inside a recipe does not matter.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from converge.core.errors import ConfigurationError, UnknownDependencyError
from converge.core.models.dependency import (
    MISSING,
    DependencyDefinition,
    DependencyKind,
    Requirement,
    VarDeclaration,
    Variant,
)
from converge.core.models.platform import Platform

logger = logging.getLogger(__name__)

F = Callable[..., Any]


class _BodyBuilder:
    """Decorators shared by the unscoped body and platform variants."""

    def __init__(self, body: DependencyDefinition | Variant):
        self._body = body

    def met(self, func: F) -> F:
        """Attach the met? predicate."""
        self._body.met = func
        return func

    def meet(self, func: F) -> F:
        """Attach the meet action."""
        self._body.meet = func
        return func

    def before(self, func: F) -> F:
        """Add a hook run just before meet."""
        self._body.before.append(func)
        return func

    def after(self, func: F) -> F:
        """Add a hook run whenever the node ends satisfied."""
        self._body.after.append(func)
        return func

    def var(
        self,
        name: str,
        default: Any = MISSING,
        choices: Iterable[Any] | None = None,
        description: str = "",
    ) -> _BodyBuilder:
        """Declare a variable this body reads."""
        self._body.vars.append(
            VarDeclaration(
                name=name,
                default=default,
                choices=tuple(choices) if choices is not None else None,
                description=description,
            )
        )
        return self

    def requires(self, *names: Any) -> _BodyBuilder:
        """Append prerequisites."""
        self._body.requires.extend(Requirement.of(n) for n in names)
        return self


class VariantBuilder(_BodyBuilder):
    """Builder for one platform-scoped variant."""


class DepBuilder(_BodyBuilder):
    """Builder for a registered dependency."""

    def __init__(self, definition: DependencyDefinition):
        super().__init__(definition)
        self.definition = definition

    def on(self, *platforms: str | Platform) -> VariantBuilder:
        """Scope the following declarations to one or more platforms.

        With several platforms, they share a single Variant object.
        """
        if not platforms:
            raise ValueError("on() needs at least one platform")
        parsed = [Platform.parse(p) for p in platforms]
        variant = self.definition.variant(parsed[0])
        for p in parsed[1:]:
            self.definition.variants[p] = variant
        return VariantBuilder(variant)


class KindBuilder(_BodyBuilder):
    """Builder for a kind template and its helpers."""

    def __init__(self, kind: DependencyKind):
        super().__init__(kind.template)
        self.kind = kind

    def helper(self, func: F) -> F:
        """Add a helper; it is called with the node's context first."""
        self.kind.helpers[func.__name__] = func
        return func


class DependencyRegistry:
    """Name → DependencyDefinition, plus kind templates."""

    def __init__(self) -> None:
        self._definitions: dict[str, DependencyDefinition] = {}
        self._kinds: dict[str, DependencyKind] = {}

    def add(self, definition: DependencyDefinition) -> DependencyDefinition:
        """Register a definition.

        Raises:
            ConfigurationError: If the name is already taken.
        """
        if definition.name in self._definitions:
            raise ConfigurationError(f"Dependency '{definition.name}' is declared twice")
        self._definitions[definition.name] = definition
        logger.debug("Registered %s '%s'", definition.kind, definition.name)
        return definition

    def dep(
        self,
        name: str,
        kind: str = "dep",
        requires: Iterable[Any] = (),
        only_on: Iterable[str | Platform] = (),
        description: str = "",
    ) -> DepBuilder:
        """Declare a dependency and return its builder."""
        definition = DependencyDefinition(
            name=name,
            kind=kind,
            requires=list(requires),
            only_on=frozenset(only_on),
            description=description,
        )
        return DepBuilder(self.add(definition))

    def kind(self, name: str) -> KindBuilder:
        """Declare a dependency kind and return its template builder.

        Every dependency declared with ``kind=name`` inherits the
        template's prerequisites, hooks and variables, falls back to
        its met?/meet, and can call its helpers. Kinds may be declared
        before or after the dependencies that use them.

        Raises:
            ConfigurationError: If the kind is already declared.
        """
        if name in self._kinds:
            raise ConfigurationError(f"Kind '{name}' is declared twice")
        kind = self._kinds[name] = DependencyKind(name=name)
        logger.debug("Registered kind '%s'", name)
        return KindBuilder(kind)

    def kind_of(self, definition: DependencyDefinition) -> DependencyKind | None:
        """The kind template for ``definition``, if one is declared."""
        return self._kinds.get(definition.kind)

    def get(self, name: str, required_by: str | None = None) -> DependencyDefinition:
        """Look up a definition.

        Raises:
            UnknownDependencyError: If nothing declares ``name``.
        """
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownDependencyError(name, required_by) from None

    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[DependencyDefinition]:
        return iter(self._definitions.values())

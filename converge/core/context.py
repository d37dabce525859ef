"""
Run context — the explicit handle every met?/meet/hook receives.

There is no ambient "current run": the runner builds one RunContext
per run and derives a per-node copy (``for_node``) carrying the node
key, its requirement parameters and its kind's helpers. Callables
reach variables, the platform and the execution adapter only through
it.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from converge.core.engine.variables import ScopedVariables, VariableStore
from converge.core.models.dependency import MISSING
from converge.core.models.platform import Platform

if TYPE_CHECKING:
    from converge.adapters.base import Shell
    from converge.core.engine.resolver import ResolvedNode


class Helpers:
    """Kind helpers bound to one node's context.

    ``ctx.helpers.nginx_conf_for("example.org", "conf")`` calls the
    helper with the context as its first argument.
    """

    def __init__(self, ctx: RunContext, functions: dict[str, Callable[..., Any]]):
        self._ctx = ctx
        self._functions = functions

    def __getattr__(self, name: str) -> Callable[..., Any]:
        try:
            func = self._functions[name]
        except KeyError:
            raise AttributeError(
                f"No helper '{name}' for '{self._ctx.node}'"
            ) from None
        return functools.partial(func, self._ctx)

    def __contains__(self, name: str) -> bool:
        return name in self._functions


@dataclass
class RunContext:
    """Everything a dependency's callables may touch during a run."""

    vars: VariableStore | ScopedVariables
    platform: Platform
    shell: Shell
    node: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    helper_functions: dict[str, Callable[..., Any]] = field(default_factory=dict)

    def for_node(self, node: ResolvedNode) -> RunContext:
        """Derive the context for one node."""
        store = self.vars.store if isinstance(self.vars, ScopedVariables) else self.vars
        return dataclasses.replace(
            self,
            vars=store.scoped(node.params) if node.params else store,
            node=node.key,
            params=dict(node.params),
            helper_functions=dict(node.helpers),
        )

    def var(self, name: str, default: Any = MISSING, choices: Any = None) -> Any:
        """Read a variable; requirement parameters shadow run-wide values."""
        return self.vars.get(name, default=default, choices=choices)

    @property
    def helpers(self) -> Helpers:
        return Helpers(self, self.helper_functions)

    @property
    def log(self) -> logging.Logger:
        """Logger named after the node, for recipe output."""
        suffix = self.node or "run"
        return logging.getLogger(f"converge.dep.{suffix}")

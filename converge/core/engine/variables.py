"""
Variable store — per-run key/value bindings.

Resolution order for a variable:
    explicit value (set)  >  declared default  >  call-site default

Declared defaults may be deferred: a callable receiving the store,
bound into a zero-argument thunk at declaration time and evaluated
exactly once, on first access. Once a variable has been read it is
memoized and stable for the rest of the run, so a later ``set()`` is
ignored.

Thread safety model
───────────────────
- ``_lock`` guards the dictionaries and the per-key lock table.
- Each key gets its own ``RLock`` so concurrent first reads resolve a
  variable once. Deferred defaults that read other variables take
  those variables' locks in turn.
- A per-thread "resolving" stack detects defaults that read themselves.

Parameterized nodes read through a ScopedVariables view, where
requirement parameters shadow run-wide values and derived defaults
are memoized per node.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from converge.core.errors import ConfigurationError
from converge.core.models.dependency import MISSING, VarDeclaration

logger = logging.getLogger(__name__)


class VariableStore:
    """Run-scoped variables with lazy defaults and validated choices."""

    def __init__(self, values: dict[str, Any] | None = None):
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.RLock] = {}
        self._declarations: dict[str, VarDeclaration] = {}
        self._thunks: dict[str, Callable[[], Any]] = {}
        self._explicit: dict[str, Any] = {}
        self._resolved: dict[str, Any] = {}
        self._local = threading.local()
        for name, value in (values or {}).items():
            self.set(name, value)

    # ── Declaration ─────────────────────────────────────────────────

    def define(
        self,
        name: str,
        default: Any = MISSING,
        choices: Iterable[Any] | None = None,
        description: str = "",
    ) -> None:
        """Declare a variable without evaluating anything."""
        self.declare(
            VarDeclaration(
                name=name,
                default=default,
                choices=tuple(choices) if choices is not None else None,
                description=description,
            )
        )

    def declare(self, declaration: VarDeclaration) -> None:
        """Register a VarDeclaration.

        Raises:
            ConfigurationError: If the name is already declared differently.
        """
        with self._lock:
            existing = self._declarations.get(declaration.name)
            if existing is not None:
                if existing == declaration:
                    return
                raise ConfigurationError(
                    f"Variable '{declaration.name}' is declared twice with "
                    "different defaults or choices"
                )
            self._declarations[declaration.name] = declaration
            if callable(declaration.default):
                func = declaration.default
                self._thunks[declaration.name] = lambda: func(self)
        logger.debug("Declared variable %s", declaration.name)

    def declaration(self, name: str) -> VarDeclaration | None:
        return self._declarations.get(name)

    # ── Binding ─────────────────────────────────────────────────────

    def set(self, name: str, value: Any) -> bool:
        """Bind an explicit value.

        Returns:
            True if applied, False if the variable was already read in
            this run (its memoized value wins).
        """
        with self._lock:
            if name in self._resolved:
                logger.warning(
                    "Ignoring new value for '%s': already resolved to %r",
                    name, self._resolved[name],
                )
                return False
            self._explicit[name] = value
        return True

    # ── Resolution ──────────────────────────────────────────────────

    def get(
        self,
        name: str,
        default: Any = MISSING,
        choices: Iterable[Any] | None = None,
    ) -> Any:
        """Resolve a variable, memoizing the first resolution.

        Raises:
            ConfigurationError: If the value is outside the declared or
                given choices, if nothing supplies a value, or if a
                deferred default reads itself.
        """
        call_choices = tuple(choices) if choices is not None else None

        if name not in self._resolved:
            with self._key_lock(name):
                if name not in self._resolved:
                    value = self._compute(name, default)
                    # Declared choices are checked before memoizing
                    self._validate(name, value, None)
                    with self._lock:
                        self._resolved[name] = value
                    logger.debug("Resolved variable %s = %r", name, value)

        value = self._resolved[name]
        self._validate(name, value, call_choices)
        return value

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __contains__(self, name: str) -> bool:
        return (
            name in self._resolved
            or name in self._explicit
            or name in self._declarations
        )

    def is_resolved(self, name: str) -> bool:
        return name in self._resolved

    def resolved(self) -> dict[str, Any]:
        """Snapshot of every variable resolved so far."""
        with self._lock:
            return dict(self._resolved)

    def explicit(self) -> dict[str, Any]:
        """Snapshot of every explicitly bound value."""
        with self._lock:
            return dict(self._explicit)

    # ── Internals ───────────────────────────────────────────────────

    def _key_lock(self, name: str) -> threading.RLock:
        with self._lock:
            lock = self._key_locks.get(name)
            if lock is None:
                lock = self._key_locks[name] = threading.RLock()
            return lock

    def _compute(self, name: str, default: Any) -> Any:
        if name in self._explicit:
            return self._explicit[name]

        thunk = self._thunks.get(name)
        if thunk is not None:
            stack: list[str] = getattr(self._local, "resolving", [])
            if name in stack:
                chain = " -> ".join([*stack[stack.index(name):], name])
                raise ConfigurationError(f"Circular variable default: {chain}")
            stack.append(name)
            self._local.resolving = stack
            try:
                return thunk()
            finally:
                stack.pop()

        declaration = self._declarations.get(name)
        if declaration is not None and not declaration.required:
            return declaration.default

        if default is not MISSING:
            return default(self) if callable(default) else default

        raise ConfigurationError(f"Missing required variable '{name}' (no value and no default)")

    def _validate(self, name: str, value: Any, call_choices: tuple[Any, ...] | None) -> None:
        declaration = self._declarations.get(name)
        for choices in (declaration.choices if declaration else None, call_choices):
            if choices is not None and value not in choices:
                allowed = ", ".join(repr(c) for c in choices)
                raise ConfigurationError(
                    f"Variable '{name}' = {value!r} is not one of: {allowed}"
                )

    def _adopt(self, name: str, value: Any) -> Any:
        """Memoize a value computed outside the store, unless one exists."""
        with self._key_lock(name):
            if name not in self._resolved:
                self._validate(name, value, None)
                with self._lock:
                    self._resolved[name] = value
                logger.debug("Resolved variable %s = %r", name, value)
            return self._resolved[name]

    def scoped(self, params: dict[str, Any]) -> ScopedVariables:
        """View of this store for one parameterized node."""
        return ScopedVariables(self, params)


class ScopedVariables:
    """One node's view: requirement parameters over the run-wide store.

    Parameters are checked against the declared choices like any other
    value. Deferred defaults are evaluated against this view so they
    can read parameters. A result that (transitively) read a parameter
    is memoized here, per node; one that did not is handed to the
    store and shared by the whole run.
    """

    def __init__(self, store: VariableStore, params: dict[str, Any]):
        self.store = store
        self.params = dict(params)
        self._derived: dict[str, Any] = {}
        self._resolving: list[str] = []
        self._uses_params: list[bool] = []

    def get(
        self,
        name: str,
        default: Any = MISSING,
        choices: Iterable[Any] | None = None,
    ) -> Any:
        call_choices = tuple(choices) if choices is not None else None

        if name in self.params:
            value = self.params[name]
            self._mark_param_read()
        elif name in self._derived:
            value = self._derived[name]
            self._mark_param_read()
        else:
            declaration = self.store.declaration(name)
            deferred = (
                declaration is not None
                and callable(declaration.default)
                and name not in self.store.explicit()
            )
            if not deferred:
                return self.store.get(name, default=default, choices=choices)
            value = self._derive(name, declaration.default)

        self.store._validate(name, value, call_choices)
        return value

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.params or name in self.store

    def _mark_param_read(self) -> None:
        if self._uses_params:
            self._uses_params[-1] = True

    def _derive(self, name: str, func: Callable[[Any], Any]) -> Any:
        if name in self._resolving:
            chain = " -> ".join([*self._resolving[self._resolving.index(name):], name])
            raise ConfigurationError(f"Circular variable default: {chain}")

        self._resolving.append(name)
        self._uses_params.append(False)
        try:
            value = func(self)
        finally:
            self._resolving.pop()
            uses_params = self._uses_params.pop()

        if not uses_params:
            return self.store._adopt(name, value)

        self.store._validate(name, value, None)
        self._derived[name] = value
        self._mark_param_read()
        return value

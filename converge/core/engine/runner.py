"""
Convergence runner — the check → remediate → recheck loop.

The runner walks a resolved DependencyGraph in topological order and
records one immutable RunResult per node:

    prerequisite failed/skipped    → skipped (met?/meet never called)
    platform restriction           → skipped-due-to-platform
    no variant for this platform   → failed (PlatformUnsupported)
    bad/missing variable           → failed (ConfigurationError)
    met? satisfied                 → after hooks → already-met
                                     (no hooks in a dry run)
    met? unsatisfied               → before hooks → meet → met? again
        recheck satisfied          → after hooks → newly-met
        recheck unsatisfied        → failed (ConvergenceFailure)
        meet/hook raised           → failed (RemediationError)

Per-node errors are caught at the node boundary and only propagate
as "skip my dependents". A second run over an unchanged system
therefore reports already-met everywhere and invokes no meet action.

Concurrency: with ``jobs > 1`` independent ready nodes are evaluated
wave by wave in a thread pool; a node still starts only after all of
its prerequisites have a recorded result.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from converge.core.context import RunContext
from converge.core.errors import (
    CheckError,
    ConvergeError,
    ConvergenceFailure,
    NodeTimeout,
    PlatformUnsupported,
    RemediationError,
)
from converge.core.engine.resolver import DependencyGraph, ResolvedNode
from converge.core.models.dependency import Check
from converge.core.models.result import Outcome, RunResult

logger = logging.getLogger(__name__)

_MARKERS = {
    Outcome.ALREADY_MET: "✓",
    Outcome.NEWLY_MET: "✓",
    Outcome.FAILED: "✗",
    Outcome.SKIPPED: "⊘",
    Outcome.SKIPPED_PLATFORM: "⊘",
    Outcome.UNMET: "?",
}

ProgressCallback = Callable[[str, str], None]


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


@dataclass
class ConvergenceReport:
    """Result of one convergence run."""

    run_id: str = ""
    platform: str = ""
    roots: list[str] = field(default_factory=list)
    results: dict[str, RunResult] = field(default_factory=dict)
    dry_run: bool = False
    cancelled: bool = False
    duration_ms: int = 0

    def _count(self, status: Outcome) -> int:
        return sum(1 for r in self.results.values() if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def already_met(self) -> int:
        return self._count(Outcome.ALREADY_MET)

    @property
    def newly_met(self) -> int:
        return self._count(Outcome.NEWLY_MET)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def platform_skipped(self) -> int:
        return self._count(Outcome.SKIPPED_PLATFORM)

    @property
    def unmet(self) -> int:
        return self._count(Outcome.UNMET)

    @property
    def meet_invocations(self) -> int:
        return sum(1 for r in self.results.values() if r.meet_invoked)

    @property
    def ok(self) -> bool:
        """Every root and every transitive prerequisite converged."""
        return all(r.ok for r in self.results.values())

    @property
    def status(self) -> str:
        if self.ok:
            return "ok"
        if self.already_met + self.newly_met > 0:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def failures(self) -> list[RunResult]:
        """Failed nodes, in run order."""
        return [r for r in self.results.values() if r.failed]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "platform": self.platform,
            "roots": list(self.roots),
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "status": self.status,
            "ok": self.ok,
            "total": self.total,
            "already_met": self.already_met,
            "newly_met": self.newly_met,
            "failed": self.failed,
            "skipped": self.skipped,
            "platform_skipped": self.platform_skipped,
            "unmet": self.unmet,
            "meet_invocations": self.meet_invocations,
            "duration_ms": self.duration_ms,
            "results": [r.model_dump(mode="json") for r in self.results.values()],
        }


class ConvergenceRunner:
    """Evaluate a DependencyGraph node by node.

    Args:
        context: Run-wide context (variables, platform, shell).
        timeout: Optional limit in seconds for each met?/meet/hook call.
        jobs: Worker threads for independent branches (1 = sequential).
        dry_run: Only evaluate met?; unmet nodes are reported, not met.
        cancel_event: Set it to stop starting new nodes.
        on_progress: Optional ``(node_key, status)`` callback.
    """

    def __init__(
        self,
        context: RunContext,
        timeout: float | None = None,
        jobs: int = 1,
        dry_run: bool = False,
        cancel_event: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        if jobs < 1:
            raise ValueError("jobs must be >= 1")
        self.context = context
        self.timeout = timeout
        self.jobs = jobs
        self.dry_run = dry_run
        self.cancel_event = cancel_event or threading.Event()
        self.on_progress = on_progress
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Stop starting new nodes; in-flight nodes finish."""
        self.cancel_event.set()

    def run(self, graph: DependencyGraph) -> ConvergenceReport:
        """Converge every node of ``graph``.

        Returns:
            ConvergenceReport whose results follow the graph order.
        """
        start = time.monotonic()
        report = ConvergenceReport(
            run_id=generate_run_id(),
            platform=graph.platform.value,
            roots=list(graph.roots),
            dry_run=self.dry_run,
        )
        results: dict[str, RunResult] = {}

        logger.info(
            "Converging %s (%d node(s), platform=%s%s)",
            ", ".join(graph.roots), len(graph), graph.platform,
            ", dry-run" if self.dry_run else "",
        )

        if self.jobs == 1:
            for key in graph.order:
                self._record(results, self._evaluate(graph.nodes[key], results))
        else:
            self._run_parallel(graph, results)

        report.results = {key: results[key] for key in graph.order}
        report.cancelled = self.cancel_event.is_set()
        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Run %s finished: %s (%d already met, %d newly met, %d failed, %d skipped)",
            report.run_id, report.status, report.already_met,
            report.newly_met, report.failed, report.skipped,
        )
        return report

    # ── Scheduling ──────────────────────────────────────────────────

    def _run_parallel(self, graph: DependencyGraph, results: dict[str, RunResult]) -> None:
        pending = list(graph.order)
        with ThreadPoolExecutor(
            max_workers=self.jobs, thread_name_prefix="converge",
        ) as pool:
            while pending:
                ready = [
                    key for key in pending
                    if all(req in results for req in graph.nodes[key].requires)
                ]
                if not ready:
                    raise RuntimeError(f"No runnable nodes among: {', '.join(pending)}")
                pending = [key for key in pending if key not in ready]
                futures = {
                    pool.submit(self._evaluate, graph.nodes[key], results): key
                    for key in ready
                }
                for future in as_completed(futures):
                    self._record(results, future.result())

    def _record(self, results: dict[str, RunResult], result: RunResult) -> None:
        with self._lock:
            if result.key in results:
                raise RuntimeError(f"Node '{result.key}' evaluated twice in one run")
            results[result.key] = result
        logger.info("%s %s → %s", _MARKERS[result.status], result.key, result.status)
        if result.diagnostic and not result.ok:
            logger.info("    %s", result.diagnostic)
        if self.on_progress:
            self.on_progress(result.key, result.status.value)

    # ── Per-node protocol ───────────────────────────────────────────

    def _evaluate(self, node: ResolvedNode, results: dict[str, RunResult]) -> RunResult:
        started_at = datetime.now(UTC).isoformat()
        start = time.monotonic()

        def finish(make: Callable[..., RunResult], *args: Any, **kwargs: Any) -> RunResult:
            return make(
                *args,
                name=node.name,
                started_at=started_at,
                ended_at=datetime.now(UTC).isoformat(),
                duration_ms=int((time.monotonic() - start) * 1000),
                **kwargs,
            )

        if self.cancel_event.is_set():
            return finish(RunResult.skip, node.key, "run cancelled")

        if node.platform_skip:
            return finish(
                RunResult.skip, node.key,
                f"not applicable on {self.context.platform}", platform=True,
            )

        blocked = [req for req in node.requires if not results[req].ok]
        if blocked:
            return finish(
                RunResult.skip, node.key,
                f"prerequisite not met: {', '.join(blocked)}",
            )

        if self.on_progress:
            self.on_progress(node.key, "started")

        if node.unsupported:
            error = PlatformUnsupported(node.name, self.context.platform.value, node.unsupported)
            return finish(RunResult.failure, node.key, error)

        ctx = self.context.for_node(node)
        meet_invoked = False
        try:
            self._resolve_vars(node, ctx)

            check = self._check(node, ctx)
            if check:
                if not self.dry_run:
                    self._run_hooks(node.after, ctx, "after hook")
                return finish(RunResult.satisfied, node.key, False, check.diagnostic)

            if self.dry_run:
                return finish(
                    RunResult, key=node.key, status=Outcome.UNMET,
                    diagnostic=check.diagnostic or "not met",
                )

            if node.meet is None:
                raise ConvergenceFailure(
                    _with_detail("unmet and no meet action to remediate", check)
                )

            self._run_hooks(node.before, ctx, "before hook")
            meet_invoked = True
            self._invoke(node.meet, ctx, RemediationError, "meet")

            recheck = self._check(node, ctx)
            if not recheck:
                raise ConvergenceFailure(
                    _with_detail("remediation did not achieve the expected state", recheck)
                )

            self._run_hooks(node.after, ctx, "after hook")
            return finish(RunResult.satisfied, node.key, True, recheck.diagnostic)

        except ConvergeError as e:
            return finish(RunResult.failure, node.key, e, meet_invoked=meet_invoked)

    def _resolve_vars(self, node: ResolvedNode, ctx: RunContext) -> None:
        for declaration in node.vars:
            self.context.vars.declare(declaration)
        for declaration in node.vars:
            ctx.var(declaration.name)

    def _check(self, node: ResolvedNode, ctx: RunContext) -> Check:
        if node.met is None:
            return Check(True, "no met? check; satisfied by prerequisites")
        return Check.coerce(self._invoke(node.met, ctx, CheckError, "met?"))

    def _run_hooks(self, hooks: list, ctx: RunContext, what: str) -> None:
        for hook in hooks:
            self._invoke(hook, ctx, RemediationError, what)

    def _invoke(
        self,
        func: Callable[[RunContext], Any],
        ctx: RunContext,
        error_cls: type[ConvergeError],
        what: str,
    ) -> Any:
        """Call a recipe callable, translating failures into the taxonomy.

        Engine errors raised inside the callable (e.g. a
        ConfigurationError from ``ctx.var``) keep their own class.
        """
        try:
            if self.timeout is None:
                return func(ctx)
            return self._call_with_timeout(func, ctx, what)
        except ConvergeError:
            raise
        except Exception as e:
            raise error_cls(f"{what} raised {type(e).__name__}: {e}") from e

    def _call_with_timeout(
        self,
        func: Callable[[RunContext], Any],
        ctx: RunContext,
        what: str,
    ) -> Any:
        """Run ``func`` in a daemon thread and stop waiting after ``timeout``.

        An over-running call is abandoned, not interrupted. The thread is
        a daemon so it cannot keep the process alive once the run is over.
        """
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = func(ctx)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(
            target=target, name=f"converge-call-{ctx.node or 'run'}", daemon=True,
        )
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            logger.warning("Abandoning %s of '%s' after %ss", what, ctx.node, self.timeout)
            raise NodeTimeout(f"{what} timed out after {self.timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")


def _with_detail(message: str, check: Check) -> str:
    if check.diagnostic:
        return f"{message}: {check.diagnostic}"
    return message

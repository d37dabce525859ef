"""
RunResult — the recorded outcome of evaluating one node in one run.

The runner never raises for a per-node problem: everything that goes
wrong while evaluating a node is captured here. A RunResult is created
once, is immutable, and the same instance is observed by every
dependent of a shared prerequisite.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Outcome(StrEnum):
    """Per-node outcome."""

    ALREADY_MET = "already-met"
    NEWLY_MET = "newly-met"
    FAILED = "failed"
    SKIPPED = "skipped"
    SKIPPED_PLATFORM = "skipped-due-to-platform"
    UNMET = "unmet"  # dry runs only


# Outcomes that let dependents proceed.
PASSING = frozenset({Outcome.ALREADY_MET, Outcome.NEWLY_MET, Outcome.SKIPPED_PLATFORM})


class RunResult(BaseModel):
    """Outcome of one node."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str = ""
    status: Outcome
    diagnostic: str = ""
    error: str | None = None          # taxonomy class name, e.g. "RemediationError"
    meet_invoked: bool = False

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """Whether dependents may proceed past this node."""
        return self.status in PASSING

    @property
    def failed(self) -> bool:
        return self.status == Outcome.FAILED

    @property
    def skipped(self) -> bool:
        return self.status == Outcome.SKIPPED

    @classmethod
    def satisfied(
        cls,
        key: str,
        newly: bool,
        diagnostic: str = "",
        **kwargs: Any,
    ) -> RunResult:
        """Create an already-met / newly-met result."""
        return cls(
            key=key,
            status=Outcome.NEWLY_MET if newly else Outcome.ALREADY_MET,
            diagnostic=diagnostic,
            meet_invoked=newly,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        key: str,
        error: BaseException | str,
        diagnostic: str = "",
        **kwargs: Any,
    ) -> RunResult:
        """Create a failed result from an exception (or an error kind)."""
        if isinstance(error, BaseException):
            kind = type(error).__name__
            diagnostic = diagnostic or str(error) or kind
        else:
            kind = error
        return cls(
            key=key,
            status=Outcome.FAILED,
            error=kind,
            diagnostic=diagnostic,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        key: str,
        reason: str = "",
        platform: bool = False,
        **kwargs: Any,
    ) -> RunResult:
        """Create a skipped (or skipped-due-to-platform) result."""
        return cls(
            key=key,
            status=Outcome.SKIPPED_PLATFORM if platform else Outcome.SKIPPED,
            diagnostic=reason,
            **kwargs,
        )

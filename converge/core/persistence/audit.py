"""
Audit ledger — append-only convergence history.

Every run writes one entry to an NDJSON (newline-delimited JSON) file
under the state directory. The ledger is append-only: entries are
never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from converge.core.engine.runner import ConvergenceReport

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    roots: list[str] = Field(default_factory=list)
    platform: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # ok, partial, failed
    nodes_total: int = 0
    already_met: int = 0
    newly_met: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0

    # "<node>: <diagnostic>" for each failed node
    failures: list[str] = Field(default_factory=list)

    # Extensible context
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: ConvergenceReport, **context: Any) -> AuditEntry:
        return cls(
            run_id=report.run_id,
            roots=list(report.roots),
            platform=report.platform,
            dry_run=report.dry_run,
            status=report.status,
            nodes_total=report.total,
            already_met=report.already_met,
            newly_met=report.newly_met,
            failed=report.failed,
            skipped=report.skipped,
            duration_ms=report.duration_ms,
            failures=[f"{r.key}: {r.diagnostic}" for r in report.failures()],
            context=context,
        )


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif state_dir is not None:
            self._path = state_dir / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(".converge") / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an audit entry to the ledger."""
        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s", entry.run_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:] if n > 0 else []

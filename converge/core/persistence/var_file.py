"""
Saved variables — opt-in persistence of explicit bindings across runs.

Variables are run-scoped by default. When the caller asks
(``--save-vars``), the explicitly bound values of a run are written to
``<state_dir>/vars.json``; ``--saved-vars`` loads them back as the
lowest-precedence overrides of the next run.

Writes are atomic (write to temp file, then rename) to prevent
corruption if the process crashes mid-write.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_VARS_FILE = "vars.json"


def default_vars_path(state_dir: Path) -> Path:
    return state_dir / DEFAULT_VARS_FILE


def load_vars(path: Path) -> dict[str, Any]:
    """Load saved variables.

    Returns:
        The saved mapping; empty if the file is missing or unreadable.
    """
    if not path.is_file():
        logger.info("No saved vars at %s", path)
        return {}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Cannot load saved vars from %s: %s — ignoring", path, e)
        return {}

    if not isinstance(data, dict):
        logger.warning("Saved vars file %s is not a mapping — ignoring", path)
        return {}

    logger.debug("Loaded %d saved var(s) from %s", len(data), path)
    return data


def save_vars(values: dict[str, Any], path: Path) -> None:
    """Merge ``values`` into the saved variables (atomic write).

    Values that are not JSON-serializable are stored as strings.
    """
    merged = {**load_vars(path), **values}

    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(merged, indent=2, sort_keys=True, default=str) + "\n"

    try:
        _fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".vars_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("Saved %d var(s) to %s", len(merged), path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except Exception as e:
        logger.error("Failed to save vars to %s: %s", path, e)
        raise

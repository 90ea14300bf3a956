"""Append-only JSON-lines logs, one file per UTC day."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("argos.journal")

CRITICAL_PREFIX = "critical-errors"
HEALTH_PREFIX = "health"
ALERTS_FILE = "offline-alerts.jsonl"
HEALTH_ALERTS_FILE = "critical-alerts.jsonl"


def dated_path(logs_dir: Path, prefix: str, when: datetime | None = None) -> Path:
    """Path of the day file for ``prefix``, e.g. ``critical-errors-2024-05-01.jsonl``."""
    when = when or datetime.now(timezone.utc)
    day = when.astimezone(timezone.utc).strftime("%Y-%m-%d")
    return Path(logs_dir) / f"{prefix}-{day}.jsonl"


def append_line(path: Path, payload: dict[str, Any]) -> None:
    """Append one compact JSON object as a line. Raises OSError on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, default=str, separators=(",", ":"))
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def tail(path: Path, limit: int = 50, chunk_size: int = 64 * 1024) -> list[dict[str, Any]]:
    """Read the last ``limit`` parseable JSON lines, oldest first.

    Missing files yield an empty list; malformed lines are skipped.
    """
    try:
        with open(path, "rb") as f:
            # Seek from end, reading only as much as needed
            f.seek(0, 2)
            size = f.tell()
            if size == 0:
                return []
            read_size = min(size, chunk_size * max(1, limit // 64 + 1))
            f.seek(size - read_size)
            data = f.read().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return []

    lines = data.splitlines()
    if read_size < size and lines:
        lines = lines[1:]  # Drop potentially partial first line

    entries: list[dict[str, Any]] = []
    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            entries.append(obj)
            if len(entries) >= limit:
                break
    entries.reverse()
    return entries


def last_entry(path: Path) -> dict[str, Any] | None:
    entries = tail(path, limit=1)
    return entries[-1] if entries else None

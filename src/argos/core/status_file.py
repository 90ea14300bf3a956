"""Atomic read/write of the shared status file."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from argos.models.runtime import StatusRecord

logger = logging.getLogger("argos.status_file")


def write_status_file(path: Path, record: StatusRecord) -> None:
    """Replace the status file with ``record`` in one rename.

    The document is written to a temp file in the same directory and moved
    into place with ``os.replace``, so readers see either the old or the new
    file, never a partial one. Raises OSError on failure.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(record.to_dict(), indent=2)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_status_file(path: Path) -> StatusRecord:
    """Load the status file.

    Raises FileNotFoundError when absent and ValueError when the content is
    not a valid status document.
    """
    with open(path, encoding="utf-8") as f:
        raw = f.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Status file is not valid JSON: {exc}") from exc
    return StatusRecord.from_dict(data)


def try_read_status_file(path: Path) -> StatusRecord | None:
    """Like :func:`read_status_file` but returns None for missing/malformed files."""
    try:
        return read_status_file(path)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.debug("Unreadable status file %s: %s", path, exc)
        return None

"""
Crash-safe file writes.

Readers in other processes must never observe a half-written file, so every
write goes to a temporary sibling and is renamed over the target.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path via temp file + rename.

    The temp file lives in the target directory so os.replace stays on one
    filesystem. On failure the temp file is removed and the error re-raised.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError as e:
            logger.debug(f"Could not remove temp file {tmp_name}: {e}")
        raise


def atomic_write_json(path: Path, data) -> None:
    """Serialize data as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")

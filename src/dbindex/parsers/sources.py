"""Source file discovery and reading shared by the parsers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)

# Directories never worth descending into
SKIP_DIRS = frozenset({
    ".git", ".gradle", ".idea", "build", "out", "node_modules",
})


def iter_source_files(directory: Path, suffixes: tuple[str, ...] = (".kt",)) -> list[Path]:
    """Return every file under *directory* with one of *suffixes*, sorted.

    A directory that does not exist yields an empty list.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    found = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for fname in filenames:
            if fname.lower().endswith(suffixes):
                found.append(Path(dirpath) / fname)
    return sorted(found)


def read_source(path: Path) -> str | None:
    """Read a text file, returning None (and logging) when it cannot be read."""
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        log.warning("Cannot read %s: %s", path, exc)
        return None

"""Plain-text and JSON formatting helpers shared by the commands."""

from __future__ import annotations

import json as _json
from datetime import datetime, timezone

# Envelope schema versioning (semver: major.minor.patch)
ENVELOPE_SCHEMA_VERSION = "1.0.0"
ENVELOPE_SCHEMA_NAME = "dbindex-envelope-v1"


def loc(path: str, line: int | None = None) -> str:
    if line is not None:
        return f"{path}:{line}"
    return path


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    if not rows:
        return "(none)"
    widths = [len(h) for h in headers]
    num_cols = len(widths)
    for row in rows:
        for i, cell in enumerate(row):
            if i < num_cols:
                widths[i] = max(widths[i], len(str(cell)))
    lines = ["  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(str(cell).ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return "\n".join(lines)


def to_json(data) -> str:
    """Serialize data to a JSON string with deterministic key ordering."""
    return _json.dumps(data, indent=2, default=str, sort_keys=True)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def json_envelope(command: str, summary: dict | None = None, **payload) -> dict:
    """Wrap a command result in the standard JSON envelope.

    The timestamp lives under ``_meta`` so the content keys stay identical
    across runs on the same project.
    """
    out: dict = {
        "schema": ENVELOPE_SCHEMA_NAME,
        "schema_version": ENVELOPE_SCHEMA_VERSION,
        "command": command,
        "version": _get_version(),
        "summary": summary or {},
    }
    out.update(payload)
    out["_meta"] = {"timestamp": utc_timestamp()}
    return out


def _get_version() -> str:
    from dbindex import __version__

    return __version__

"""Baseline file: the set of accepted findings, for incremental adoption.

Format::

    {
      "version": 1,
      "generatedAt": "2026-01-01T00:00:00Z",
      "issues": [{"service": "svc", "table": "users", "column": "email"}]
    }

Issues are identified by (service, table, column), case-insensitively.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

from dbindex.model import BaselineComparison, BaselineIssue, MissingIndex
from dbindex.output.formatter import utc_timestamp

log = logging.getLogger(__name__)

BASELINE_VERSION = 1


def _dedupe_sorted(issues: Iterable[BaselineIssue]) -> list[BaselineIssue]:
    by_key: dict[tuple[str, str, str], BaselineIssue] = {}
    for issue in issues:
        by_key.setdefault(issue.key(), issue)
    return [by_key[k] for k in sorted(by_key)]


def compare_baseline(
    current: list[MissingIndex],
    baseline: Iterable[BaselineIssue],
) -> BaselineComparison:
    """Partition *current* findings into new / existing and list resolved ones."""
    baseline_by_key = {issue.key(): issue for issue in baseline}
    current_keys = {m.key() for m in current}

    new_issues = sorted((m for m in current if m.key() not in baseline_by_key), key=MissingIndex.key)
    existing_issues = sorted((m for m in current if m.key() in baseline_by_key), key=MissingIndex.key)
    resolved_issues = [
        baseline_by_key[k] for k in sorted(baseline_by_key) if k not in current_keys
    ]
    return BaselineComparison(
        current=sorted(current, key=MissingIndex.key),
        new_issues=new_issues,
        existing_issues=existing_issues,
        resolved_issues=resolved_issues,
    )


def write_baseline(path: Path, issues: Iterable[MissingIndex | BaselineIssue]) -> list[BaselineIssue]:
    """Write *issues* as the new baseline and return what was written."""
    entries = _dedupe_sorted(
        BaselineIssue.from_missing(i) if isinstance(i, MissingIndex) else i
        for i in issues
    )
    generated_at = utc_timestamp()
    data = {
        "version": BASELINE_VERSION,
        "generatedAt": generated_at,
        "issues": [e.to_dict() for e in entries],
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    log.info("Wrote %d baseline issues to %s", len(entries), path)
    return entries


def read_baseline(path: Path) -> list[BaselineIssue]:
    """Load a baseline file. A missing file is an empty baseline.

    Raises ValueError when the file is not valid JSON.
    """
    path = Path(path)
    if not path.is_file():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Baseline {path} is not valid JSON: {exc}") from exc

    raw_issues = data.get("issues", []) if isinstance(data, dict) else []
    if not isinstance(raw_issues, list):
        log.warning("Baseline %s: 'issues' is not a list, ignoring it", path)
        raw_issues = []

    issues = []
    for entry in raw_issues:
        fields = [entry.get(k) for k in ("service", "table", "column")] if isinstance(entry, dict) else []
        if len(fields) != 3 or not all(isinstance(f, str) for f in fields):
            log.warning("Baseline %s: skipping malformed entry %r", path, entry)
            continue
        issues.append(BaselineIssue(*fields))
    return _dedupe_sorted(issues)

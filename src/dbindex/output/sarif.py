"""SARIF 2.1.0 output for code scanning integrations.

Usage::

    from dbindex.output.sarif import missing_to_sarif, write_sarif

    sarif = missing_to_sarif(comparison)
    write_sarif(sarif, "db-index.sarif")
"""

from __future__ import annotations

import hashlib as _hashlib
import json as _json
from pathlib import Path

from dbindex.model import BaselineComparison, MissingIndex

_SARIF_VERSION = "2.1.0"
_SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/main/sarif-2.1/schema/sarif-schema-2.1.0.json"
_TOOL_NAME = "db-index-checker"

RULE_MISSING_INDEX = "missing-index"


def _get_version() -> str:
    from dbindex import __version__

    return __version__


# ── Location helpers ─────────────────────────────────────────────────


def _physical_location(file_path: str, line: int | None = None) -> dict:
    """Build a SARIF physicalLocation with a forward-slash URI."""
    uri = file_path.replace("\\", "/")
    loc: dict = {
        "artifactLocation": {"uri": uri},
    }
    if line is not None and line > 0:
        loc["region"] = {"startLine": line}
    return loc


def _location(file_path: str, line: int | None = None) -> dict:
    return {"physicalLocation": _physical_location(file_path, line)}


# ── Core builder ─────────────────────────────────────────────────────


def to_sarif(
    tool_name: str,
    version: str,
    rules: list[dict],
    results: list[dict],
) -> dict:
    """Build a complete SARIF 2.1.0 JSON document.

    Each rule dict carries ``id`` and ``shortDescription`` plus optional
    ``defaultLevel``; each result carries ``ruleId``, ``level``,
    ``message`` and ``locations``.
    """
    driver: dict = {
        "name": tool_name,
        "version": version,
        "rules": [_build_rule(r) for r in rules],
    }

    return {
        "$schema": _SARIF_SCHEMA,
        "version": _SARIF_VERSION,
        "runs": [
            {
                "tool": {"driver": driver},
                "results": results,
            }
        ],
    }


def _build_rule(rule: dict) -> dict:
    out: dict = {
        "id": rule["id"],
        "shortDescription": {"text": rule["shortDescription"]},
    }
    if "fullDescription" in rule:
        out["fullDescription"] = {"text": rule["fullDescription"]}
    if "defaultLevel" in rule:
        out["defaultConfiguration"] = {"level": rule["defaultLevel"]}
    return out


# ── Write / serialise ────────────────────────────────────────────────


def write_sarif(data: dict, output_path: str | Path | None = None) -> str:
    """Serialise *data* to JSON and optionally write it to *output_path*.

    Returns the JSON string in all cases.
    """
    text = _json.dumps(data, indent=2, default=str)
    if output_path is not None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return text


# ── Missing indexes ──────────────────────────────────────────────────


def _fingerprint(issue: MissingIndex) -> str:
    payload = "|".join(issue.key())
    return _hashlib.sha1(payload.encode("utf-8")).hexdigest()


def _result(issue: MissingIndex, level: str, baseline_state: str) -> dict:
    message = (
        f"Column '{issue.table_name}.{issue.column_name}' is queried"
        f" ({issue.query_source}) but no index starts with it"
        f" [service: {issue.service_name}]"
    )
    return {
        "ruleId": RULE_MISSING_INDEX,
        "level": level,
        "message": {"text": message},
        "locations": [_location(issue.repository_file, issue.line_number)],
        "partialFingerprints": {"missingIndex/v1": _fingerprint(issue)},
        "baselineState": baseline_state,
        "properties": {
            "service": issue.service_name,
            "table": issue.table_name,
            "column": issue.column_name,
            "queryType": issue.query_type.value,
        },
    }


def missing_to_sarif(comparison: BaselineComparison) -> dict:
    """New findings are warnings, findings already in the baseline are notes."""
    rules = [{
        "id": RULE_MISSING_INDEX,
        "shortDescription": "Queried column has no supporting index",
        "fullDescription": (
            "A repository query filters, joins or sorts on a column that is not"
            " the leading column of any index declared in the Liquibase changelog."
        ),
        "defaultLevel": "warning",
    }]
    results = [_result(i, "warning", "new") for i in comparison.new_issues]
    results += [_result(i, "note", "unchanged") for i in comparison.existing_issues]
    return to_sarif(_TOOL_NAME, _get_version(), rules, results)

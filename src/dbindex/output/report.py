"""Console, JSON and HTML renderings of a baseline comparison."""

from __future__ import annotations

import html
import json
from collections import defaultdict
from pathlib import Path
from typing import Iterable

from dbindex.model import BaselineComparison, BaselineIssue, MissingIndex, QueryType
from dbindex.output.formatter import loc


def query_description(issue: MissingIndex) -> str:
    if issue.query_type is QueryType.DERIVED_QUERY:
        return f"query '{issue.query_source}'"
    if issue.query_type is QueryType.JPQL:
        return "JPQL query"
    return "native SQL query"


def _grouped(issues: Iterable, key) -> list[tuple[str, list]]:
    """Group by *key*, groups ordered case-insensitively."""
    groups: dict[str, list] = defaultdict(list)
    for issue in issues:
        groups[key(issue)].append(issue)
    return sorted(groups.items(), key=lambda kv: kv[0].lower())


def _missing_section(title: str, issues: list[MissingIndex]) -> list[str]:
    if not issues:
        return []
    lines = [f"  {title}:"]
    for service, service_issues in _grouped(issues, lambda i: i.service_name):
        lines.append(f"    {service}:")
        for table, table_issues in _grouped(service_issues, lambda i: i.table_name):
            lines.append(f"      Table '{table}':")
            for issue in sorted(table_issues, key=lambda i: i.column_name.lower()):
                lines.append(
                    f"        - Column '{issue.column_name}' used in {query_description(issue)}"
                    f" ({loc(issue.repository_file, issue.line_number)})"
                )
    lines.append("")
    return lines


def _resolved_section(issues: list[BaselineIssue]) -> list[str]:
    if not issues:
        return []
    lines = ["  Resolved since baseline:"]
    for service, service_issues in _grouped(issues, lambda i: i.service_name):
        lines.append(f"    {service}:")
        for table, table_issues in _grouped(service_issues, lambda i: i.table_name):
            columns = ", ".join(sorted((i.column_name for i in table_issues), key=str.lower))
            lines.append(f"      - {table}: {columns}")
    lines.append("")
    return lines


def render_console(comparison: BaselineComparison, warn_on_existing: bool = True) -> str:
    """Human-readable report grouped by service, then table."""
    if not comparison.current and not comparison.resolved_issues:
        return "Index Checker: All queried columns have indexes!"

    lines = [
        f"Index Checker: Found {len(comparison.current)} potentially missing indexes",
        f"  New: {len(comparison.new_issues)}, Existing: {len(comparison.existing_issues)},"
        f" Resolved: {len(comparison.resolved_issues)}",
        "",
    ]
    lines += _missing_section("New missing indexes", comparison.new_issues)
    if warn_on_existing:
        lines += _missing_section("Existing baseline issues", comparison.existing_issues)
    elif comparison.existing_issues:
        lines += [f"  Existing baseline issues: {len(comparison.existing_issues)} (suppressed)", ""]
    lines += _resolved_section(comparison.resolved_issues)

    services = {m.service_name.lower() for m in comparison.current}
    lines.append(
        f"Total: {len(comparison.current)} potentially missing indexes"
        f" across {len(services)} services"
    )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def comparison_to_dict(comparison: BaselineComparison) -> dict:
    return {
        "total": len(comparison.current),
        "new": len(comparison.new_issues),
        "existing": len(comparison.existing_issues),
        "resolved": len(comparison.resolved_issues),
        "issues": {
            "new": [m.to_dict() for m in comparison.new_issues],
            "existing": [m.to_dict() for m in comparison.existing_issues],
            "resolved": [i.to_dict() for i in comparison.resolved_issues],
        },
        "allCurrent": [m.to_dict() for m in comparison.current],
    }


def write_json_report(comparison: BaselineComparison, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(comparison_to_dict(comparison), indent=2) + "\n", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

_CSS = """\
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 2rem; color: #333; }
h1 { border-bottom: 2px solid #e0e0e0; padding-bottom: 0.5rem; }
.summary { background: #e5e7eb; padding: 0.75rem 1rem; border-radius: 6px; }
.success { color: #065f46; background: #d1fae5; padding: 0.75rem 1rem; border-radius: 6px; }
table { border-collapse: collapse; width: 100%; margin-top: 1rem; }
th { background: #f3f4f6; text-align: left; padding: 0.6rem 0.8rem; border-bottom: 2px solid #d1d5db; }
td { padding: 0.5rem 0.8rem; border-bottom: 1px solid #e5e7eb; }
code { background: #f3f4f6; padding: 0.15rem 0.4rem; border-radius: 3px; }"""


def _h(s) -> str:
    return html.escape("" if s is None else str(s))


def _issue_table(title: str, issues: list[MissingIndex]) -> list[str]:
    if not issues:
        return []
    out = [
        f"<h2>{_h(title)}</h2>",
        "<table>",
        "<thead><tr><th>Service</th><th>Table</th><th>Column</th><th>Query</th><th>Source</th></tr></thead>",
        "<tbody>",
    ]
    for issue in sorted(issues, key=MissingIndex.key):
        out.append(
            f"<tr><td>{_h(issue.service_name)}</td>"
            f"<td><code>{_h(issue.table_name)}</code></td>"
            f"<td><code>{_h(issue.column_name)}</code></td>"
            f"<td>{_h(query_description(issue))}</td>"
            f"<td>{_h(loc(issue.repository_file, issue.line_number))}</td></tr>"
        )
    out += ["</tbody>", "</table>"]
    return out


def _resolved_table(issues: list[BaselineIssue]) -> list[str]:
    if not issues:
        return []
    out = [
        "<h2>Resolved since baseline</h2>",
        "<table>",
        "<thead><tr><th>Service</th><th>Table</th><th>Column</th></tr></thead>",
        "<tbody>",
    ]
    for issue in sorted(issues, key=BaselineIssue.key):
        out.append(
            f"<tr><td>{_h(issue.service_name)}</td>"
            f"<td><code>{_h(issue.table_name)}</code></td>"
            f"<td><code>{_h(issue.column_name)}</code></td></tr>"
        )
    out += ["</tbody>", "</table>"]
    return out


def render_html(comparison: BaselineComparison) -> str:
    body: list[str] = ["<h1>Index Check Report</h1>"]
    if not comparison.current and not comparison.resolved_issues:
        body.append('<p class="success">All queried columns have indexes!</p>')
    else:
        body.append(
            f'<p class="summary">Total <strong>{len(comparison.current)}</strong> missing indexes'
            f" | New: <strong>{len(comparison.new_issues)}</strong>"
            f" | Existing: <strong>{len(comparison.existing_issues)}</strong>"
            f" | Resolved: <strong>{len(comparison.resolved_issues)}</strong></p>"
        )
        body += _issue_table("New missing indexes", comparison.new_issues)
        body += _issue_table("Existing baseline issues", comparison.existing_issues)
        body += _resolved_table(comparison.resolved_issues)

    return "\n".join([
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="UTF-8">',
        "<title>Index Check Report</title>",
        f"<style>\n{_CSS}\n</style>",
        "</head>",
        "<body>",
        *body,
        "</body>",
        "</html>",
        "",
    ])


def write_html_report(comparison: BaselineComparison, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_html(comparison), encoding="utf-8")
    return path

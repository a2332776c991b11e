"""Find repository queries that filter, join or sort on unindexed columns.

Pipeline per service module:

  1. map @Entity classes to tables and field -> column names
  2. extract the columns used by derived queries, JPQL and native SQL
  3. collect indexed columns from the Liquibase changelog graph
  4. report query columns that lead no index
  5. split findings against the baseline into new / existing / resolved
"""

from __future__ import annotations

from pathlib import Path

import click
from click.core import ParameterSource

from dbindex.baseline import compare_baseline, read_baseline, write_baseline
from dbindex.config import CheckerConfig, find_config, load_config
from dbindex.exit_codes import ConfigError, DbIndexError, GateFailureError
from dbindex.model import BaselineIssue
from dbindex.output.formatter import format_table, json_envelope, to_json
from dbindex.output.report import (
    comparison_to_dict,
    render_console,
    write_html_report,
    write_json_report,
)
from dbindex.scanner import ScanResult, run_check

_ROOT_ARG = click.Path(exists=True, file_okay=False, path_type=Path)
_FILE_OPT = click.Path(dir_okay=False, path_type=Path)


def load_checker_config(root: Path, config_path: Path | None) -> CheckerConfig:
    """The explicit config file, else the project's .dbindex.yaml, else defaults."""
    path = config_path or find_config(root)
    if path is None:
        return CheckerConfig()
    try:
        return load_config(path)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _baseline_path(root: Path, config: CheckerConfig, override: Path | None) -> Path:
    path = Path(override) if override else Path(config.baseline_file)
    return path if path.is_absolute() else root / path


def _module_rows(scan: ScanResult) -> list[list[str]]:
    rows = []
    for module in scan.modules:
        if module.skipped:
            rows.append([module.name, "-", "-", "-", "-", f"skipped: {module.skipped}"])
        else:
            rows.append([
                module.name,
                str(len(module.mappings)),
                str(len(module.query_columns)),
                str(len(module.indexed_columns)),
                str(len(module.missing)),
                "checked",
            ])
    return rows


def _module_dicts(scan: ScanResult) -> list[dict]:
    return [
        {
            "name": m.name,
            "skipped": m.skipped,
            "entities": len(m.mappings),
            "query_columns": len(m.query_columns),
            "indexed_columns": len(m.indexed_columns),
            "missing": len(m.missing),
        }
        for m in scan.modules
    ]


def run_check_command(
    ctx: click.Context,
    root: Path,
    config: CheckerConfig,
    baseline_override: Path | None = None,
    json_report: Path | None = None,
    html_report: Path | None = None,
    sarif_path: Path | None = None,
    do_write_baseline: bool = False,
) -> None:
    json_mode = ctx.obj.get("json") if ctx.obj else False
    root = Path(root).resolve()
    baseline_path = _baseline_path(root, config, baseline_override)

    scan = run_check(root, config)
    findings = scan.findings

    if do_write_baseline:
        written = write_baseline(baseline_path, findings)
        comparison = compare_baseline(findings, written)
    else:
        try:
            baseline: list[BaselineIssue] = read_baseline(baseline_path)
        except ValueError as exc:
            raise DbIndexError(str(exc)) from exc
        comparison = compare_baseline(findings, baseline)

    written_reports: list[tuple[str, Path]] = []
    if json_report:
        written_reports.append(("JSON", write_json_report(comparison, json_report)))
    if html_report:
        written_reports.append(("HTML", write_html_report(comparison, html_report)))
    if sarif_path:
        from dbindex.output.sarif import missing_to_sarif, write_sarif

        write_sarif(missing_to_sarif(comparison), sarif_path)
        written_reports.append(("SARIF", Path(sarif_path)))

    total = len(comparison.current)
    new_n = len(comparison.new_issues)
    if do_write_baseline:
        verdict = f"Baseline written with {total} issue{'s' if total != 1 else ''}"
    elif total == 0:
        verdict = "All queried columns have indexes"
    else:
        verdict = (
            f"{total} potentially missing index{'es' if total != 1 else ''}"
            f" ({new_n} new, {len(comparison.existing_issues)} existing)"
        )

    # --- JSON output ---
    if json_mode:
        report = comparison_to_dict(comparison)
        click.echo(to_json(json_envelope(
            "baseline" if do_write_baseline else "check",
            summary={
                "verdict": verdict,
                "total": total,
                "new": new_n,
                "existing": len(comparison.existing_issues),
                "resolved": len(comparison.resolved_issues),
                "modules_checked": len(scan.checked),
                "modules_skipped": len(scan.modules) - len(scan.checked),
                "baseline_file": str(baseline_path),
                "baseline_written": do_write_baseline,
            },
            modules=_module_dicts(scan),
            issues=report["issues"],
            all_current=report["allCurrent"],
            reports={kind: str(path) for kind, path in written_reports},
        )))
    else:
        # --- Text output ---
        click.echo(f"VERDICT: {verdict}")
        click.echo()
        click.echo(format_table(
            ["Module", "Entities", "Queries", "Indexes", "Missing", "Status"],
            _module_rows(scan),
        ))
        click.echo()
        click.echo(render_console(comparison, config.warn_on_existing_missing))
        if do_write_baseline:
            click.echo(f"\nBaseline written to {baseline_path}")
        if written_reports:
            click.echo("\nReports written to:")
            for kind, path in written_reports:
                click.echo(f"  {kind}: {path}")

    if do_write_baseline:
        return
    if config.fail_on_new_missing and new_n:
        raise GateFailureError(
            f"{new_n} new missing index{'es' if new_n != 1 else ''} not in baseline {baseline_path}"
        )
    if config.fail_on_missing and total:
        raise GateFailureError(f"{total} missing index{'es' if total != 1 else ''} found")


def _explicit(ctx: click.Context, name: str, value):
    """*value* when the flag was given on the command line, else None."""
    return value if ctx.get_parameter_source(name) is ParameterSource.COMMANDLINE else None


@click.command("check")
@click.argument("root", default=".", type=_ROOT_ARG)
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Config file (default: .dbindex.yaml in ROOT)")
@click.option("--service", "services", multiple=True,
              help="Check only this service module (repeatable)")
@click.option("--baseline", "baseline_file", type=_FILE_OPT,
              help="Baseline file (default: db-index-checker-baseline.json in ROOT)")
@click.option("--exclude-table", "exclude_tables", multiple=True, help="Ignore a table (repeatable)")
@click.option("--exclude-column", "exclude_columns", multiple=True, help="Ignore a column on every table (repeatable)")
@click.option("--exclude-finding", "exclude_findings", multiple=True,
              help="Ignore one table.column finding (repeatable)")
@click.option("--fail-on-missing/--no-fail-on-missing", default=False,
              help="Exit 5 when any missing index is found")
@click.option("--fail-on-new-missing/--no-fail-on-new-missing", default=False,
              help="Exit 5 when a missing index is not in the baseline")
@click.option("--json-report", type=_FILE_OPT, help="Write the JSON report to this file")
@click.option("--html-report", type=_FILE_OPT, help="Write the HTML report to this file")
@click.option("--sarif", "sarif_path", type=_FILE_OPT, help="Write SARIF 2.1.0 results to this file")
@click.option("--write-baseline", is_flag=True, help="Accept all current findings as the new baseline")
@click.pass_context
def check(ctx, root, config_path, services, baseline_file, exclude_tables, exclude_columns,
          exclude_findings, fail_on_missing, fail_on_new_missing, json_report, html_report,
          sarif_path, write_baseline):
    """Report queried columns that no index starts with.

    ROOT is a Gradle project: either a multi-module build whose service
    modules sit directly under it, or a single service.

    \b
    Examples:
        dbindex check                              # Check the current project
        dbindex check --fail-on-new-missing        # CI: fail only on regressions
        dbindex check --service billing-service    # One module
        dbindex --json check services/             # Machine-readable output
    """
    root = Path(root)
    config = load_checker_config(root, config_path).with_overrides(
        services=list(services) or None,
        exclude_tables=exclude_tables,
        exclude_columns=exclude_columns,
        exclude_findings=exclude_findings,
        fail_on_missing=_explicit(ctx, "fail_on_missing", fail_on_missing),
        fail_on_new_missing=_explicit(ctx, "fail_on_new_missing", fail_on_new_missing),
    )
    run_check_command(
        ctx, root, config,
        baseline_override=baseline_file,
        json_report=json_report,
        html_report=html_report,
        sarif_path=sarif_path,
        do_write_baseline=write_baseline,
    )

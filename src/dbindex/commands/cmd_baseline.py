"""Write the baseline file from the current findings."""

from __future__ import annotations

from pathlib import Path

import click

from dbindex.commands.cmd_check import load_checker_config, run_check_command


@click.command("baseline")
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Config file (default: .dbindex.yaml in ROOT)")
@click.option("--service", "services", multiple=True,
              help="Check only this service module (repeatable)")
@click.option("--baseline", "baseline_file", type=click.Path(dir_okay=False, path_type=Path),
              help="Baseline file to write")
@click.pass_context
def baseline(ctx, root, config_path, services, baseline_file):
    """Accept every current missing index as known.

    Same as ``dbindex check --write-baseline``: later checks with
    --fail-on-new-missing only fail on findings added after this point.
    """
    root = Path(root)
    config = load_checker_config(root, config_path).with_overrides(
        services=list(services) or None,
    )
    run_check_command(ctx, root, config, baseline_override=baseline_file, do_write_baseline=True)

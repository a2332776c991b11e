"""Click CLI entry point with lazy-loaded subcommands."""

import logging

import click


# Lazy-loading command group: imports command modules only when invoked.
_COMMANDS = {
    "check":    ("dbindex.commands.cmd_check",    "check"),
    "baseline": ("dbindex.commands.cmd_baseline", "baseline"),
}


class LazyGroup(click.Group):
    """A Click group that lazy-loads command modules on first access."""

    def list_commands(self, ctx):
        return sorted(_COMMANDS.keys())

    def get_command(self, ctx, cmd_name):
        if cmd_name not in _COMMANDS:
            return None
        module_path, attr_name = _COMMANDS[cmd_name]
        import importlib
        mod = importlib.import_module(module_path)
        return getattr(mod, attr_name)


@click.group(cls=LazyGroup)
@click.version_option(package_name="db-index-checker")
@click.option('--json', 'json_mode', is_flag=True, help='Output in JSON format')
@click.option('--verbose', '-v', is_flag=True, help='Log per-module progress to stderr')
@click.pass_context
def cli(ctx, json_mode, verbose):
    """Static check for repository queries on columns without a database index."""
    ctx.ensure_object(dict)
    ctx.obj['json'] = json_mode
    ctx.obj['verbose'] = verbose
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

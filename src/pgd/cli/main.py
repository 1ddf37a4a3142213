"""pgd CLI - one PostgreSQL container per project."""

import click

from pgd.cli.init import init_command
from pgd.cli.instance import instance_group
from pgd.core.logging import configure_logging, set_invocation_id


@click.group()
@click.version_option(version="0.1.0", prog_name="pgd")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """pgd - a disposable PostgreSQL instance for each project."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    set_invocation_id()
    configure_logging(level="DEBUG" if verbose else "WARNING")


cli.add_command(init_command, name="init")
cli.add_command(instance_group, name="instance")


if __name__ == "__main__":
    cli()

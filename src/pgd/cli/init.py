"""pgd init command - create the project config and start its instance."""

import click

from pgd.cli.utils import find_project_root, handle_errors, open_session
from pgd.core.progress import get_console, make_kv_table, spinner, status
from pgd.lifecycle import TransitionResult


def _mask(secret: str) -> str:
    return secret[:2] + "*" * max(len(secret) - 2, 0)


def _print_summary(result: TransitionResult) -> None:
    config = result.config
    rows = [
        ("Project", config.project_name),
        ("Container", result.container_name),
        ("PostgreSQL", config.postgres_version),
        ("Database", config.database_name),
        ("User", config.user_name),
        ("Password", _mask(config.password)),
        ("Port", f"127.0.0.1:{config.port}"),
    ]
    get_console().print(make_kv_table("Instance", rows, dim_keys=frozenset({"Password"})))


@click.command()
@click.option("--postgres-version", default=None, help="PostgreSQL version for a new project (default: 16)")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Preferred host port for a new project")
@click.pass_context
@handle_errors
def init_command(ctx: click.Context, postgres_version: str | None, port: int | None) -> None:
    """Create pgd.toml (if missing) and make sure the instance is running.

    Safe to run repeatedly: an existing pgd.toml is kept as is and a running
    container is left alone.
    """
    session = open_session(ctx)
    root = find_project_root()
    existing = session.config_store.load(root)

    with spinner("Starting PostgreSQL"):
        result = session.controller.init(root, postgres_version=postgres_version, port=port)

    if existing is not None and (postgres_version or (port and existing.port is not None)):
        status("pgd.toml already exists; --postgres-version/--port were ignored", style="warning")
    if result.config_created:
        status(f"Wrote {session.config_store.config_path(root)}", style="success")
    if result.changed:
        status(f"Instance {result.container_name} is running", style="success")
    else:
        status(f"Instance {result.container_name} was already running", style="info")

    if result.report is not None and result.report.has_drift:
        for finding in result.report.findings:
            status(f"{finding.kind.value}: {finding.message}", style="warning")

    _print_summary(result)

"""pgd instance commands - inspect and operate the project's container."""

import json
import sys
from typing import Any

import click
import questionary

from pgd.cli.utils import handle_errors, open_session
from pgd.core.errors import EXIT_CONFIRMATION, DriftDetectedError
from pgd.core.progress import get_console, make_kv_table, spinner, status
from pgd.lifecycle import StatusResult, TransitionResult


def _status_payload(result: StatusResult) -> dict[str, Any]:
    descriptor = result.descriptor
    instance = result.instance
    return {
        "project": result.config.project_name,
        "project_root": str(result.config.project_root),
        "container": result.container_name,
        "state": result.state.value,
        "desired": {
            "postgres_version": result.config.postgres_version,
            "port": result.config.port,
        },
        "observed": None
        if descriptor is None
        else {
            "id": descriptor.id,
            "image": descriptor.image_tag,
            "status": descriptor.status.value,
            "port": descriptor.bound_host_port,
            "volume": descriptor.volume_ref,
        },
        "last_seen_at": instance.last_seen_at.isoformat() if instance is not None else None,
        "drift": result.report.kind.value,
        "findings": result.report.to_list(),
    }


def _print_status(result: StatusResult) -> None:
    descriptor = result.descriptor
    rows = [
        ("Project", result.config.project_name),
        ("Container", result.container_name),
        ("State", result.state.value),
        ("PostgreSQL", descriptor.image_tag if descriptor else f"postgres:{result.config.postgres_version}"),
        ("Port", str(descriptor.bound_host_port if descriptor else result.config.port)),
    ]
    if result.instance is not None:
        rows.append(("Last seen", result.instance.last_seen_at.strftime("%Y-%m-%d %H:%M:%S UTC")))
    get_console().print(make_kv_table("Instance", rows, dim_keys=frozenset({"Last seen"})))

    if not result.report.has_drift:
        status("No drift", style="success")
        return
    for finding in result.report.findings:
        detail = ""
        if finding.expected is not None or finding.observed is not None:
            detail = f" (expected {finding.expected}, observed {finding.observed})"
        status(f"{finding.kind.value}: {finding.message}{detail}", style="warning")


def _print_transition(result: TransitionResult, done: str, noop: str) -> None:
    if result.changed:
        status(f"{result.container_name}: {done}", style="success")
    else:
        status(f"{result.container_name}: {noop}", style="info")


def _stdin_is_tty() -> bool:
    return sys.stdin.isatty()


def _confirmed(operation: str, confirm: bool, warning: str) -> bool:
    """--confirm, or an interactive yes on a terminal. Never prompts otherwise.

    Declining the prompt exits with the confirmation exit code.
    """
    if confirm:
        return True
    if not _stdin_is_tty():
        return False

    get_console().print(f"\n[bold]{warning}[/bold]\n")
    answer = questionary.select(
        "This action cannot be undone. Are you sure?",
        choices=[
            questionary.Choice("No, keep it", value=False),
            questionary.Choice(f"Yes, {operation}", value=True),
        ],
        style=questionary.Style(
            [
                ("question", "bold"),
                ("highlighted", "fg:red bold"),
                ("selected", "fg:red"),
            ]
        ),
    ).ask()
    if not answer:
        get_console().print("[dim]Cancelled[/dim]")
        raise click.exceptions.Exit(EXIT_CONFIRMATION)
    return True


@click.group()
@click.option("--name", default=None, help="Address an instance by container or project name instead of the cwd")
@click.pass_context
def instance_group(ctx: click.Context, name: str | None) -> None:
    """Inspect and operate this project's PostgreSQL instance."""
    ctx.ensure_object(dict)
    ctx.obj["name"] = name


@instance_group.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--strict", is_flag=True, help="Exit with code 4 if any drift is found")
@click.pass_context
@handle_errors
def status_command(ctx: click.Context, as_json: bool, strict: bool) -> None:
    """Compare pgd.toml with the live container and report drift."""
    session = open_session(ctx)
    result = session.controller.status(session.project_root(ctx.obj["name"]))

    if as_json:
        click.echo(json.dumps(_status_payload(result), indent=2))
    else:
        _print_status(result)

    if strict and result.report.has_drift:
        raise DriftDetectedError.from_report(result.container_name, result.report)


@instance_group.command("logs")
@click.option("--follow", "-f", is_flag=True, help="Keep streaming new output until interrupted")
@click.pass_context
@handle_errors
def logs_command(ctx: click.Context, follow: bool) -> None:
    """Print the container's logs."""
    session = open_session(ctx)
    stream = session.controller.logs(session.project_root(ctx.obj["name"]), follow=follow)
    with stream:
        try:
            for line in stream:
                click.echo(line.text, err=line.stream == "stderr")
        except KeyboardInterrupt:
            # Ctrl-C ends a followed stream normally
            pass


@instance_group.command("conn")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["dsn", "human"]),
    default="dsn",
    show_default=True,
    help="Output format",
)
@click.pass_context
@handle_errors
def conn_command(ctx: click.Context, fmt: str) -> None:
    """Print connection details for the instance."""
    session = open_session(ctx, require_runtime=False)
    info = session.controller.connection(session.project_root(ctx.obj["name"]))

    if fmt == "dsn":
        click.echo(info.dsn)
        return

    rows = [
        ("Host", info.host),
        ("Port", str(info.port)),
        ("Database", info.database),
        ("User", info.user),
        ("Password", info.password),
    ]
    get_console().print(make_kv_table("Connection", rows))


@instance_group.command("start")
@click.pass_context
@handle_errors
def start_command(ctx: click.Context) -> None:
    """Start the instance's container."""
    session = open_session(ctx)
    with spinner("Starting PostgreSQL"):
        result = session.controller.start(session.project_root(ctx.obj["name"]))
    _print_transition(result, "started", "already running")


@instance_group.command("stop")
@click.pass_context
@handle_errors
def stop_command(ctx: click.Context) -> None:
    """Stop the instance's container. Data is kept."""
    session = open_session(ctx)
    with spinner("Stopping PostgreSQL"):
        result = session.controller.stop(session.project_root(ctx.obj["name"]))
    _print_transition(result, "stopped", f"already {result.state.value.lower()}")


@instance_group.command("restart")
@click.pass_context
@handle_errors
def restart_command(ctx: click.Context) -> None:
    """Stop (if running) and start the instance's container."""
    session = open_session(ctx)
    with spinner("Restarting PostgreSQL"):
        result = session.controller.restart(session.project_root(ctx.obj["name"]))
    _print_transition(result, "restarted", "restarted")


@instance_group.command("destroy")
@click.option("--confirm", is_flag=True, help="Skip the confirmation prompt")
@click.option("--wipe", "remove_volume", is_flag=True, help="Also delete the data volume")
@click.pass_context
@handle_errors
def destroy_command(ctx: click.Context, confirm: bool, remove_volume: bool) -> None:
    """Remove the instance's container. pgd.toml is kept.

    Without --wipe the data volume survives and 'pgd init' reattaches it.
    """
    session = open_session(ctx)
    root = session.project_root(ctx.obj["name"])
    warning = "The container will be removed"
    if remove_volume:
        warning += " and ALL DATA in its volume deleted"

    confirmed = _confirmed("destroy", confirm, warning)

    with spinner("Destroying instance"):
        result = session.controller.destroy(root, confirm=confirmed, remove_volume=remove_volume)
    status(f"{result.container_name}: destroyed", style="success")
    if not remove_volume:
        status("Data volume kept. Run 'pgd init' to recreate the container.", style="info")


@instance_group.command("wipe")
@click.option("--confirm", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
@handle_errors
def wipe_command(ctx: click.Context, confirm: bool) -> None:
    """Delete all data and recreate the container on an empty volume."""
    session = open_session(ctx)
    root = session.project_root(ctx.obj["name"])

    confirmed = _confirmed("wipe", confirm, "ALL DATA in the instance's volume will be deleted")

    with spinner("Wiping instance"):
        result = session.controller.wipe(root, confirm=confirmed)
    status(f"{result.container_name}: wiped ({result.state.value.lower()})", style="success")


@instance_group.command("reassign-port")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Preferred new host port")
@click.pass_context
@handle_errors
def reassign_port_command(ctx: click.Context, port: int | None) -> None:
    """Move the instance to a different host port, keeping its data."""
    session = open_session(ctx)
    root = session.project_root(ctx.obj["name"])
    old = session.config_store.require(root).port

    with spinner("Reassigning port"):
        result = session.controller.reassign_port(root, port)

    if result.changed:
        status(f"{result.container_name}: port {old} -> {result.config.port}", style="success")
    else:
        status(f"{result.container_name}: already on port {result.config.port}", style="info")

"""CLI utilities."""

import functools
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import structlog
from rich.markup import escape

from pgd.config import ConfigStore, PgdConfig, load_settings
from pgd.core.errors import PgdError
from pgd.core.logging import configure_logging
from pgd.core.progress import get_console
from pgd.lifecycle import LifecycleController, PortAllocator
from pgd.lifecycle.ports import can_bind
from pgd.runtime import DockerRuntime
from pgd.state import StateStore

log = structlog.get_logger()


@dataclass(frozen=True)
class Session:
    """Everything one CLI invocation needs, wired from the resolved settings."""

    settings: PgdConfig
    config_store: ConfigStore
    state_store: StateStore
    controller: LifecycleController

    def project_root(self, name: str | None = None) -> Path:
        """Project root for ``--name NAME``, or the current directory."""
        if name is None:
            return find_project_root()
        _, state = self.state_store.find(name)
        return Path(state.project_root)


def find_project_root(start_path: Path | None = None) -> Path:
    """The project root is the working directory: pgd.toml lives at its top."""
    return (start_path or Path.cwd()).resolve()


def open_session(ctx: click.Context, *, require_runtime: bool = True) -> Session:
    """Load settings and build the controller for this invocation.

    With ``require_runtime`` the Docker daemon is pinged up front so an
    unreachable daemon fails fast with a clear error.
    """
    verbose = bool((ctx.obj or {}).get("verbose"))
    settings = load_settings()

    logging_config = settings.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    configure_logging(config=logging_config)

    config_store = ConfigStore(settings.state_dir)
    state_store = StateStore(settings.state_dir)
    runtime = DockerRuntime(settings.docker)
    ctx.call_on_close(runtime.close)
    if require_runtime:
        runtime.ping()

    allocator = PortAllocator(config_store.leased_ports, settings.ports, probe=can_bind)
    controller = LifecycleController(config_store, state_store, runtime, allocator)
    log.debug("cli.session", state_dir=str(settings.state_dir), docker_host=settings.docker.host)
    return Session(settings, config_store, state_store, controller)


def render_error(error: PgdError) -> None:
    console = get_console()
    console.print(f"[red]Error:[/red] {escape(error.message)}", highlight=False)
    if error.remedy:
        console.print(f"[dim]{escape(error.remedy)}[/dim]", highlight=False)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Render PgdError with rich and exit with its mapped exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PgdError as e:
            log.debug("cli.error", code=int(e.code), error=e.error_name, details=e.details)
            render_error(e)
            raise click.exceptions.Exit(e.code.exit_code) from e

    return wrapper

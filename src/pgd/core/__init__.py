"""Core module exports."""

from pgd.core.errors import (
    ConfigError,
    ConfirmationRequiredError,
    ContainerNotFoundError,
    ContainerRuntimeError,
    DriftDetectedError,
    ErrorCode,
    PgdError,
    PortUnavailableError,
)
from pgd.core.logging import (
    clear_invocation_id,
    configure_logging,
    get_invocation_id,
    get_logger,
    set_invocation_id,
)
from pgd.core.progress import spinner, status

__all__ = [
    # Errors
    "ConfigError",
    "ConfirmationRequiredError",
    "ContainerNotFoundError",
    "ContainerRuntimeError",
    "DriftDetectedError",
    "ErrorCode",
    "PgdError",
    "PortUnavailableError",
    # Logging
    "clear_invocation_id",
    "configure_logging",
    "get_invocation_id",
    "get_logger",
    "set_invocation_id",
    # Progress
    "spinner",
    "status",
]

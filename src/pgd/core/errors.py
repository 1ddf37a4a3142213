"""pgd error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Container runtime
- 4xxx: Container lookup
- 5xxx: Ports
- 6xxx: Confirmation
- 7xxx: Drift
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pgd.lifecycle.reconciler import DriftReport

EXIT_FAILURE = 1
EXIT_CONFIRMATION = 3
EXIT_DRIFT = 4


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING = 2003

    # Container runtime (3xxx)
    RUNTIME_UNAVAILABLE = 3001
    RUNTIME_OPERATION_FAILED = 3002

    # Container lookup (4xxx)
    CONTAINER_NOT_FOUND = 4001
    INSTANCE_AMBIGUOUS = 4002

    # Ports (5xxx)
    PORT_UNAVAILABLE = 5001

    # Confirmation (6xxx)
    CONFIRMATION_REQUIRED = 6001

    # Drift (7xxx)
    DRIFT_DETECTED = 7001

    @property
    def exit_code(self) -> int:
        """Process exit code for this error."""
        if self is ErrorCode.CONFIRMATION_REQUIRED:
            return EXIT_CONFIRMATION
        if self is ErrorCode.DRIFT_DETECTED:
            return EXIT_DRIFT
        return EXIT_FAILURE


@dataclass(frozen=True, slots=True)
class PgdError(Exception):
    """Base error with structured context for CLI and JSON output."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    remedy: str | None = None

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
            "remedy": self.remedy,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(PgdError):
    """Configuration-related errors."""

    @classmethod
    def missing(cls, project_root: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MISSING,
            message=f"No pgd.toml found in {project_root}",
            details={"project_root": project_root},
            remedy="Run 'pgd init' in the project directory first.",
        )

    @classmethod
    def parse_error(cls, path: str, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
            remedy=f"Fix the syntax in {path} or delete it and run 'pgd init'.",
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
            remedy=f"Correct '{field}' in the configuration.",
        )


class ContainerRuntimeError(PgdError):
    """Errors raised by the container runtime boundary."""

    @classmethod
    def unavailable(cls, host: str, reason: str) -> ContainerRuntimeError:
        return cls(
            code=ErrorCode.RUNTIME_UNAVAILABLE,
            message=f"Cannot reach the container runtime at {host}: {reason}",
            details={"host": host, "reason": reason},
            remedy="Make sure Docker is installed and running, or set PGD__DOCKER__HOST.",
        )

    @classmethod
    def operation_failed(cls, operation: str, target: str, reason: str) -> ContainerRuntimeError:
        return cls(
            code=ErrorCode.RUNTIME_OPERATION_FAILED,
            message=f"Container runtime failed to {operation} '{target}': {reason}",
            details={"operation": operation, "target": target, "reason": reason},
            remedy="Check 'pgd instance logs' and the Docker daemon logs.",
        )


class ContainerNotFoundError(PgdError):
    """The instance's container does not exist."""

    @classmethod
    def for_instance(cls, container_name: str, project_name: str | None = None) -> ContainerNotFoundError:
        return cls(
            code=ErrorCode.CONTAINER_NOT_FOUND,
            message=f"Container '{container_name}' does not exist",
            details={"container_name": container_name, "project_name": project_name},
            remedy="Run 'pgd init' to create the instance.",
        )

    @classmethod
    def unknown_name(cls, name: str) -> ContainerNotFoundError:
        return cls(
            code=ErrorCode.CONTAINER_NOT_FOUND,
            message=f"No known instance named '{name}'",
            details={"name": name},
            remedy="Run the command from the project directory, or check the name.",
        )

    @classmethod
    def ambiguous_name(cls, name: str, candidates: list[str]) -> ContainerNotFoundError:
        return cls(
            code=ErrorCode.INSTANCE_AMBIGUOUS,
            message=f"Instance name '{name}' matches several projects",
            details={"name": name, "candidates": candidates},
            remedy=f"Use the full instance name, one of: {', '.join(candidates)}",
        )


class PortUnavailableError(PgdError):
    """No acceptable host port could be found."""

    @classmethod
    def exhausted(cls, start: int, end: int) -> PortUnavailableError:
        return cls(
            code=ErrorCode.PORT_UNAVAILABLE,
            message=f"No available ports found in range {start}-{end}",
            details={"start": start, "end": end},
            remedy="Free a port in that range or pass --port with another value.",
        )


class ConfirmationRequiredError(PgdError):
    """A destructive operation was attempted without confirmation."""

    @classmethod
    def for_operation(cls, operation: str, container_name: str) -> ConfirmationRequiredError:
        return cls(
            code=ErrorCode.CONFIRMATION_REQUIRED,
            message=f"'{operation}' on '{container_name}' requires confirmation",
            details={"operation": operation, "container_name": container_name},
            remedy=f"Re-run with 'pgd instance {operation} --confirm'.",
        )


class DriftDetectedError(PgdError):
    """Observed state differs from the declared configuration."""

    @classmethod
    def from_report(cls, container_name: str, report: DriftReport) -> DriftDetectedError:
        return cls(
            code=ErrorCode.DRIFT_DETECTED,
            message=f"Instance '{container_name}' has drifted: {report.summary()}",
            details={"container_name": container_name, "findings": report.to_list()},
            remedy="Inspect 'pgd instance status' and reconcile the configuration.",
        )


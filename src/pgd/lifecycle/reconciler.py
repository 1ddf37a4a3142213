"""Drift detection between declared config and the observed container.

``reconcile`` is a pure function of its inputs: it never touches the
container or the state store. All matching findings are reported in
priority order, so ``status`` can show the complete picture; the report's
``kind`` is the highest-priority one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pgd.config.models import ProjectConfig
from pgd.runtime.base import ContainerDescriptor, ContainerStatus, split_image_tag


class DriftKind(StrEnum):
    NO_DRIFT = "NoDrift"
    MISSING_CONTAINER = "MissingContainer"
    VERSION_MISMATCH = "VersionMismatch"
    PORT_MISMATCH = "PortMismatch"
    UNEXPECTED_RUNNING = "UnexpectedRunning"
    UNEXPECTED_STOPPED = "UnexpectedStopped"


@dataclass(frozen=True, slots=True)
class DriftFinding:
    kind: DriftKind
    message: str
    expected: str | None = None
    observed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "expected": self.expected,
            "observed": self.observed,
        }


@dataclass(frozen=True, slots=True)
class DriftReport:
    findings: tuple[DriftFinding, ...] = field(default_factory=tuple)

    @property
    def kind(self) -> DriftKind:
        return self.findings[0].kind if self.findings else DriftKind.NO_DRIFT

    @property
    def has_drift(self) -> bool:
        return bool(self.findings)

    @property
    def kinds(self) -> list[DriftKind]:
        return [f.kind for f in self.findings]

    def summary(self) -> str:
        if not self.findings:
            return DriftKind.NO_DRIFT.value
        return ", ".join(f.kind.value for f in self.findings)

    def to_list(self) -> list[dict[str, Any]]:
        return [f.to_dict() for f in self.findings]


def image_version(image_tag: str) -> str:
    """Version component of an image tag: ``postgres:16.4-alpine`` -> ``16.4``."""
    _, tag = split_image_tag(image_tag)
    return tag.split("-", 1)[0]


def versions_match(desired: str, observed: str) -> bool:
    """``16`` matches ``16`` and the more specific ``16.4``; ``16`` never matches ``17``."""
    return observed == desired or observed.startswith(desired + ".")


def _status_finding(expected: ContainerStatus, observed: ContainerStatus) -> DriftFinding | None:
    if expected is ContainerStatus.RUNNING and observed is not ContainerStatus.RUNNING:
        return DriftFinding(
            kind=DriftKind.UNEXPECTED_STOPPED,
            message="Container is not running but was last left running",
            expected=expected.value,
            observed=observed.value,
        )
    if expected in (ContainerStatus.STOPPED, ContainerStatus.CREATED) and observed is ContainerStatus.RUNNING:
        return DriftFinding(
            kind=DriftKind.UNEXPECTED_RUNNING,
            message="Container is running but was last left stopped",
            expected=expected.value,
            observed=observed.value,
        )
    return None


class StateReconciler:
    """Compares desired configuration against a container observation."""

    def reconcile(
        self,
        desired: ProjectConfig,
        observed: ContainerDescriptor | None,
        expected_status: ContainerStatus | None = None,
    ) -> DriftReport:
        """Classify the divergence between ``desired`` and ``observed``.

        Args:
            desired: The project's declared config.
            observed: Fresh ``inspect()`` result, None if the container is absent.
            expected_status: Status implied by the last lifecycle intent
                (the persisted ``last_known_status``), if any.
        """
        if observed is None or observed.status is ContainerStatus.ABSENT:
            return DriftReport(
                findings=(
                    DriftFinding(
                        kind=DriftKind.MISSING_CONTAINER,
                        message="No container exists for this project",
                    ),
                )
            )

        findings: list[DriftFinding] = []

        observed_version = image_version(observed.image_tag)
        if not versions_match(desired.postgres_version, observed_version):
            findings.append(
                DriftFinding(
                    kind=DriftKind.VERSION_MISMATCH,
                    message="Container runs a different PostgreSQL version than configured "
                    "(upgrades and downgrades are not supported)",
                    expected=desired.postgres_version,
                    observed=observed_version,
                )
            )

        if desired.port is not None and observed.bound_host_port != desired.port:
            findings.append(
                DriftFinding(
                    kind=DriftKind.PORT_MISMATCH,
                    message="Container is bound to a different host port than configured",
                    expected=str(desired.port),
                    observed=str(observed.bound_host_port) if observed.bound_host_port else None,
                )
            )

        if expected_status is not None:
            status_finding = _status_finding(expected_status, observed.status)
            if status_finding is not None:
                findings.append(status_finding)

        return DriftReport(findings=tuple(findings))

"""Instance lifecycle state machine.

Every intent starts from a fresh ``inspect()`` of the project's container
and derives the current state from it; the persisted InstanceState is only
a record of the last confirmed observation. Effects run in order and are
tried once. A failure propagates immediately, leaving the earlier effects
in place, and the InstanceState is left untouched.

Ordering for a new instance: allocate port -> persist config -> create ->
start -> inspect -> persist InstanceState.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from urllib.parse import quote

import structlog
from pydantic import ValidationError

from pgd.config.models import DEFAULT_POSTGRES_VERSION, ProjectConfig, generate_password
from pgd.config.store import ConfigStore, project_name_for, validation_error
from pgd.core.errors import (
    ConfigError,
    ConfirmationRequiredError,
    ContainerNotFoundError,
    ContainerRuntimeError,
)
from pgd.lifecycle.ports import PortAllocator
from pgd.lifecycle.reconciler import DriftReport, StateReconciler, image_version
from pgd.runtime.base import (
    ContainerDescriptor,
    ContainerRuntime,
    ContainerStatus,
    LogStream,
    PortBinding,
    VolumeRef,
)
from pgd.runtime.naming import container_labels, container_name, volume_ref
from pgd.state.store import InstanceState, StateStore, utc_now

log = structlog.get_logger()

CONNECT_HOST = "127.0.0.1"


class LifecycleState(StrEnum):
    ABSENT = "Absent"
    CREATED = "Created"
    RUNNING = "Running"
    STOPPED = "Stopped"
    DESTROYED = "Destroyed"


_STATE_FOR_STATUS = {
    ContainerStatus.ABSENT: LifecycleState.ABSENT,
    ContainerStatus.CREATED: LifecycleState.CREATED,
    ContainerStatus.RUNNING: LifecycleState.RUNNING,
    ContainerStatus.STOPPED: LifecycleState.STOPPED,
}


def lifecycle_state(descriptor: ContainerDescriptor | None) -> LifecycleState:
    if descriptor is None:
        return LifecycleState.ABSENT
    return _STATE_FOR_STATUS[descriptor.status]


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of a lifecycle intent."""

    state: LifecycleState
    config: ProjectConfig
    container_name: str
    changed: bool
    instance: InstanceState | None = None
    report: DriftReport | None = None
    config_created: bool = False


@dataclass(frozen=True, slots=True)
class StatusResult:
    config: ProjectConfig
    container_name: str
    state: LifecycleState
    descriptor: ContainerDescriptor | None
    instance: InstanceState | None
    report: DriftReport


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    host: str
    port: int
    user: str
    password: str
    database: str

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{quote(self.database, safe='')}"
        )


def _container_env(config: ProjectConfig) -> dict[str, str]:
    return {
        "POSTGRES_PASSWORD": config.password,
        "POSTGRES_USER": config.user_name,
        "POSTGRES_DB": config.database_name,
    }


class LifecycleController:
    """Drives one project's container through its lifecycle.

    Collaborators are injected so tests can run against an in-memory
    runtime and temporary stores.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        state_store: StateStore,
        runtime: ContainerRuntime,
        allocator: PortAllocator,
        reconciler: StateReconciler | None = None,
    ) -> None:
        self._configs = config_store
        self._states = state_store
        self._runtime = runtime
        self._allocator = allocator
        self._reconciler = reconciler or StateReconciler()

    # -- helpers ---------------------------------------------------------------

    def _observe(self, name: str) -> ContainerDescriptor | None:
        return self._runtime.inspect(name)

    def _require_container(self, config: ProjectConfig, name: str) -> ContainerDescriptor:
        observed = self._observe(name)
        if observed is None:
            raise ContainerNotFoundError.for_instance(name, config.project_name)
        return observed

    def _create(self, config: ProjectConfig, name: str) -> str:
        if config.port is None:
            raise ConfigError.invalid_value("port", None, "no host port assigned")
        return self._runtime.create(
            name,
            config.image_tag,
            _container_env(config),
            PortBinding(host_port=config.port, host_ip=CONNECT_HOST),
            volume_ref(config),
            container_labels(config),
        )

    def _confirm(self, name: str, operation: str, expected: set[ContainerStatus]) -> ContainerDescriptor:
        """Re-inspect after an effect and check it landed."""
        observed = self._observe(name)
        status = observed.status if observed is not None else ContainerStatus.ABSENT
        if observed is None or status not in expected:
            raise ContainerRuntimeError.operation_failed(
                operation, name, f"container is {status.value} after {operation}"
            )
        return observed

    def _record(self, config: ProjectConfig, name: str, descriptor: ContainerDescriptor) -> InstanceState:
        state = InstanceState(
            container_id=descriptor.id,
            container_name=name,
            project_name=config.project_name,
            project_root=str(config.project_root),
            last_known_version=image_version(descriptor.image_tag),
            last_known_port=descriptor.bound_host_port,
            last_known_status=descriptor.status,
            last_seen_at=utc_now(),
        )
        self._states.save(name, state)
        return state

    def _start_confirmed(self, config: ProjectConfig, name: str, container_id: str) -> InstanceState:
        self._runtime.start(container_id)
        descriptor = self._confirm(name, "start", {ContainerStatus.RUNNING})
        return self._record(config, name, descriptor)

    def _teardown(self, observed: ContainerDescriptor) -> None:
        if observed.status is ContainerStatus.RUNNING:
            self._runtime.stop(observed.id)
        self._runtime.remove(observed.id)

    # -- intents ---------------------------------------------------------------

    def init(
        self,
        project_root: Path,
        *,
        postgres_version: str | None = None,
        port: int | None = None,
    ) -> TransitionResult:
        """Ensure the project has a config and a running container.

        ``postgres_version`` and ``port`` only shape a newly written config.
        An existing pgd.toml is authoritative.
        """
        root = project_root.resolve()
        config = self._configs.load(root)
        config_created = False

        if config is None:
            lease = self._allocator.allocate(port, owner=root)
            try:
                config = ProjectConfig(
                    project_root=root,
                    project_name=project_name_for(root),
                    postgres_version=postgres_version or DEFAULT_POSTGRES_VERSION,
                    password=generate_password(),
                    port=lease.port,
                )
            except ValidationError as e:
                raise validation_error(e) from e
            self._configs.save(root, config)
            config_created = True
            log.info("lifecycle.config_created", project=config.project_name, port=lease.port)
        elif config.port is None:
            lease = self._allocator.allocate(port, owner=root)
            config = config.model_copy(update={"port": lease.port})
            self._configs.save(root, config)
            log.info("lifecycle.port_assigned", project=config.project_name, port=lease.port)

        name = container_name(config)
        observed = self._observe(name)
        changed = True

        if observed is None:
            container_id = self._create(config, name)
            instance = self._start_confirmed(config, name, container_id)
        elif observed.status is ContainerStatus.RUNNING:
            instance = self._record(config, name, observed)
            changed = False
        else:
            instance = self._start_confirmed(config, name, observed.id)

        descriptor = self._observe(name)
        report = self._reconciler.reconcile(config, descriptor, ContainerStatus.RUNNING)
        log.info("lifecycle.init", instance=name, changed=changed, drift=report.summary())
        return TransitionResult(
            state=LifecycleState.RUNNING,
            config=config,
            container_name=name,
            changed=changed or config_created,
            instance=instance,
            report=report,
            config_created=config_created,
        )

    def start(self, project_root: Path) -> TransitionResult:
        config = self._configs.require(project_root)
        name = container_name(config)
        observed = self._require_container(config, name)

        if observed.status is ContainerStatus.RUNNING:
            instance = self._record(config, name, observed)
            return TransitionResult(LifecycleState.RUNNING, config, name, changed=False, instance=instance)

        instance = self._start_confirmed(config, name, observed.id)
        log.info("lifecycle.start", instance=name)
        return TransitionResult(LifecycleState.RUNNING, config, name, changed=True, instance=instance)

    def stop(self, project_root: Path) -> TransitionResult:
        config = self._configs.require(project_root)
        name = container_name(config)
        observed = self._require_container(config, name)

        if observed.status is not ContainerStatus.RUNNING:
            instance = self._record(config, name, observed)
            return TransitionResult(lifecycle_state(observed), config, name, changed=False, instance=instance)

        self._runtime.stop(observed.id)
        descriptor = self._confirm(name, "stop", {ContainerStatus.STOPPED})
        instance = self._record(config, name, descriptor)
        log.info("lifecycle.stop", instance=name)
        return TransitionResult(LifecycleState.STOPPED, config, name, changed=True, instance=instance)

    def restart(self, project_root: Path) -> TransitionResult:
        config = self._configs.require(project_root)
        name = container_name(config)
        observed = self._require_container(config, name)

        if observed.status is ContainerStatus.RUNNING:
            self._runtime.stop(observed.id)
        instance = self._start_confirmed(config, name, observed.id)
        log.info("lifecycle.restart", instance=name)
        return TransitionResult(LifecycleState.RUNNING, config, name, changed=True, instance=instance)

    def status(self, project_root: Path) -> StatusResult:
        """Inspect and reconcile. Advisory: only ``last_seen_at`` is updated."""
        config = self._configs.require(project_root)
        name = container_name(config)
        observed = self._observe(name)
        instance = self._states.load(name)

        expected = instance.last_known_status if instance is not None else None
        report = self._reconciler.reconcile(config, observed, expected)

        if instance is not None:
            instance = instance.model_copy(update={"last_seen_at": utc_now()})
            self._states.save(name, instance)

        log.debug("lifecycle.status", instance=name, drift=report.summary())
        return StatusResult(
            config=config,
            container_name=name,
            state=lifecycle_state(observed),
            descriptor=observed,
            instance=instance,
            report=report,
        )

    def logs(self, project_root: Path, *, follow: bool = False) -> LogStream:
        config = self._configs.require(project_root)
        name = container_name(config)
        observed = self._require_container(config, name)
        return self._runtime.stream_logs(observed.id, follow=follow)

    def connection(self, project_root: Path) -> ConnectionInfo:
        config = self._configs.require(project_root)
        if config.port is None:
            raise ConfigError.invalid_value("port", None, "no host port assigned; run 'pgd init'")
        return ConnectionInfo(
            host=CONNECT_HOST,
            port=config.port,
            user=config.user_name,
            password=config.password,
            database=config.database_name,
        )

    def destroy(self, project_root: Path, *, confirm: bool, remove_volume: bool = False) -> TransitionResult:
        """Remove the container (and optionally its data volume).

        Raises:
            ConfirmationRequiredError: ``confirm`` is False. Nothing is touched.
            ContainerNotFoundError: There is no container to destroy.
        """
        config = self._configs.require(project_root)
        name = container_name(config)
        if not confirm:
            raise ConfirmationRequiredError.for_operation("destroy", name)

        observed = self._require_container(config, name)
        self._teardown(observed)
        if self._observe(name) is not None:
            raise ContainerRuntimeError.operation_failed("destroy", name, "container still exists after remove")

        # The container is confirmed gone; its record goes with it even if the volume cannot be removed
        self._states.delete(name)
        if remove_volume:
            self._runtime.remove_volume(volume_ref(config))

        log.info("lifecycle.destroy", instance=name, volume_removed=remove_volume)
        return TransitionResult(LifecycleState.DESTROYED, config, name, changed=True)

    def wipe(self, project_root: Path, *, confirm: bool) -> TransitionResult:
        """Recreate the container on an empty data volume.

        The new container follows the current config. It is started only if
        the old one was running.
        """
        config = self._configs.require(project_root)
        name = container_name(config)
        if not confirm:
            raise ConfirmationRequiredError.for_operation("wipe", name)

        observed = self._require_container(config, name)
        was_running = observed.status is ContainerStatus.RUNNING

        self._teardown(observed)
        volume = volume_ref(config)
        if observed.volume_ref is not None and observed.volume_ref != volume.name:
            self._runtime.remove_volume(VolumeRef(observed.volume_ref, volume.mount_path))
        self._runtime.remove_volume(volume)

        container_id = self._create(config, name)
        if was_running:
            instance = self._start_confirmed(config, name, container_id)
            state = LifecycleState.RUNNING
        else:
            descriptor = self._confirm(name, "create", {ContainerStatus.CREATED})
            instance = self._record(config, name, descriptor)
            state = LifecycleState.CREATED

        log.info("lifecycle.wipe", instance=name, restarted=was_running)
        return TransitionResult(state, config, name, changed=True, instance=instance)

    def reassign_port(self, project_root: Path, preferred: int | None = None) -> TransitionResult:
        """Move the project to a new host port, keeping its data volume."""
        config = self._configs.require(project_root)
        name = container_name(config)

        if preferred is not None and preferred == config.port:
            observed = self._observe(name)
            return TransitionResult(lifecycle_state(observed), config, name, changed=False)

        root = config.project_root
        lease = self._allocator.reallocate(config.port, preferred, owner=root)
        updated = config.model_copy(update={"port": lease.port})

        observed = self._observe(name)
        if observed is None:
            self._configs.save(root, updated)
            log.info("lifecycle.reassign_port", instance=name, old=config.port, new=lease.port)
            return TransitionResult(LifecycleState.ABSENT, updated, name, changed=True)

        was_running = observed.status is ContainerStatus.RUNNING
        self._teardown(observed)
        self._configs.save(root, updated)

        container_id = self._create(updated, name)
        if was_running:
            instance = self._start_confirmed(updated, name, container_id)
        else:
            descriptor = self._confirm(name, "create", {ContainerStatus.CREATED})
            instance = self._record(updated, name, descriptor)

        log.info("lifecycle.reassign_port", instance=name, old=config.port, new=lease.port)
        state = LifecycleState.RUNNING if was_running else LifecycleState.CREATED
        return TransitionResult(state, updated, name, changed=True, instance=instance)

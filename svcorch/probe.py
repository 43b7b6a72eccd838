from __future__ import annotations

from . import db
from .docker_ops import RUNTIME_ERRORS, ClientFactory, container_info, list_service_containers
from .errors import ErrorKind
from .health import check_health
from .models import IN_FLIGHT_STATE, ActionKind, ContainerInfo, ServiceState, ServiceStatus
from .registry import ServiceLocation, ServiceRegistry
from .settings import Settings, settings as default_settings


# Native container state -> service state. Tune here, not in the logic below.
NATIVE_STATES: dict[str, ServiceState] = {
    "created": ServiceState.STARTING,
    "running": ServiceState.RUNNING,
    "restarting": ServiceState.RESTARTING,
    "paused": ServiceState.STOPPED,
    "removing": ServiceState.STOPPED,
    "exited": ServiceState.STOPPED,
    "dead": ServiceState.ERROR,
}

# Exit codes produced by a normal stop (0, SIGINT, SIGKILL, SIGTERM).
CLEAN_EXIT_CODES = frozenset({0, 130, 137, 143})

# When containers disagree the most severe state wins.
PRECEDENCE: tuple[ServiceState, ...] = (
    ServiceState.ERROR,
    ServiceState.RESTARTING,
    ServiceState.STARTING,
    ServiceState.RUNNING,
    ServiceState.UNKNOWN,
    ServiceState.STOPPED,
)


def container_state(info: ContainerInfo) -> ServiceState:
    native = (info.state or "").lower()
    state = NATIVE_STATES.get(native, ServiceState.UNKNOWN)
    if state is ServiceState.RUNNING:
        if info.health == "starting":
            return ServiceState.STARTING
        if info.health == "unhealthy":
            return ServiceState.ERROR
    if native == "exited" and info.exit_code not in CLEAN_EXIT_CODES and info.exit_code is not None:
        return ServiceState.ERROR
    return state


def aggregate_state(containers: list[ContainerInfo], in_flight: ActionKind | None = None) -> ServiceState:
    """Single service state from its containers and any action holding its lock."""
    if containers:
        states = {container_state(c) for c in containers}
        state = next(s for s in PRECEDENCE if s in states)
    else:
        # Never started, or removed by `down`.
        state = ServiceState.STOPPED

    if in_flight is ActionKind.BUILD or in_flight is ActionKind.RESTART:
        return IN_FLIGHT_STATE[in_flight]
    if in_flight is ActionKind.START and state is not ServiceState.RUNNING:
        return ServiceState.STARTING
    return state


class StatusProbe:
    """Read-only view of a service as the container runtime sees it.

    Results are advisory: the state may change right after the call returns.
    """

    def __init__(self, client_factory: ClientFactory, registry: ServiceRegistry, config: Settings | None = None):
        self.client_factory = client_factory
        self.registry = registry
        self.config = config or default_settings

    def probe(self, location: ServiceLocation, in_flight: ActionKind | None = None) -> ServiceStatus:
        try:
            client = self.client_factory()
            containers = [container_info(c) for c in list_service_containers(client, location.directory)]
        except RUNTIME_ERRORS as e:
            db.record(
                "WARN",
                f"Runtime unreachable while probing: {type(e).__name__}: {e}",
                service_name=location.name,
                project_root=location.project_root,
                config=self.config,
            )
            return ServiceStatus.unknown(
                location.name,
                ErrorKind.RUNTIME_UNAVAILABLE,
                f"Container runtime is not reachable: {e}",
            )

        state = aggregate_state(containers, in_flight)
        port = self.registry.read_port(location)
        if port is None:
            port = next((p for c in containers for p in c.ports), None)

        status = ServiceStatus(
            name=location.name,
            state=state,
            containers=containers,
            port=port,
            health=next((c.health for c in containers if c.health), None),
        )
        if self.config.http_health_check and port is not None and state is ServiceState.RUNNING:
            url = f"http://{self.config.health_host}:{port}{self.config.health_path}"
            status.endpoint = check_health(url, timeout_s=self.config.health_timeout_s)
        return status

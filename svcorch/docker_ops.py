from __future__ import annotations

from typing import Any, Callable

import docker
import requests
from docker.errors import DockerException

from .models import ActionKind, ContainerInfo
from .registry import ServiceLocation
from .settings import Settings


# Compose labels every container it creates.
WORKING_DIR_LABEL = "com.docker.compose.project.working_dir"
SERVICE_LABEL = "com.docker.compose.service"

# Errors that mean "the runtime could not be reached", not "the service is broken".
RUNTIME_ERRORS: tuple[type[BaseException], ...] = (DockerException, requests.exceptions.RequestException)

COMPOSE_VERBS: dict[ActionKind, tuple[str, ...]] = {
    ActionKind.START: ("up", "-d"),
    ActionKind.STOP: ("down",),
    ActionKind.BUILD: ("build", "--no-cache"),
    ActionKind.RESTART: ("restart",),
}

ClientFactory = Callable[[], Any]


def client_factory(config: Settings) -> ClientFactory:
    def _client() -> docker.DockerClient:
        return docker.from_env(timeout=config.docker_timeout_s)

    return _client


def docker_available(factory: ClientFactory) -> bool:
    try:
        c = factory()
        c.ping()
        return True
    except RUNTIME_ERRORS:
        return False


def compose_argv(config: Settings, location: ServiceLocation, kind: ActionKind) -> list[str]:
    """Argument vector for one lifecycle action. Never passed through a shell."""
    return [
        *config.compose_command,
        "-f",
        location.compose_file,
        "--project-directory",
        location.directory,
        *COMPOSE_VERBS[kind],
    ]


def list_service_containers(client: Any, directory: str) -> list[Any]:
    """Containers (running or not) that compose created for a service directory."""
    return client.containers.list(all=True, filters={"label": [f"{WORKING_DIR_LABEL}={directory}"]})


def _host_ports(attrs: dict[str, Any]) -> list[int]:
    ports: list[int] = []
    bindings = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    for entries in bindings.values():
        for b in entries or []:
            try:
                port = int(b.get("HostPort"))
            except (TypeError, ValueError):
                continue
            if port not in ports:
                ports.append(port)
    return ports


def container_info(container: Any) -> ContainerInfo:
    attrs = getattr(container, "attrs", None) or {}
    state = attrs.get("State") or {}
    health = (state.get("Health") or {}).get("Status")
    image = (attrs.get("Config") or {}).get("Image")
    return ContainerInfo(
        id=getattr(container, "short_id", None) or str(container.id)[:12],
        name=container.name,
        image=image,
        state=state.get("Status") or container.status,
        health=health,
        exit_code=state.get("ExitCode"),
        ports=_host_ports(attrs),
    )

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ErrorKind
from .runtime import utc_now


class ServiceState(str, Enum):
    UNKNOWN = "unknown"
    STOPPED = "stopped"
    BUILDING = "building"
    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    ERROR = "error"


class ActionKind(str, Enum):
    START = "start"
    STOP = "stop"
    BUILD = "build"
    RESTART = "restart"


# State reported after an action exits 0. A probe confirms it.
SUCCESS_STATE: dict[ActionKind, ServiceState] = {
    ActionKind.START: ServiceState.RUNNING,
    ActionKind.RESTART: ServiceState.RUNNING,
    ActionKind.STOP: ServiceState.STOPPED,
    ActionKind.BUILD: ServiceState.UNKNOWN,
}

# State implied while an action holds the service lock.
IN_FLIGHT_STATE: dict[ActionKind, ServiceState] = {
    ActionKind.START: ServiceState.STARTING,
    ActionKind.RESTART: ServiceState.RESTARTING,
    ActionKind.BUILD: ServiceState.BUILDING,
    ActionKind.STOP: ServiceState.UNKNOWN,
}


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ContainerInfo(_Model):
    id: str
    name: str
    image: str | None = None
    state: str = Field(..., description="Native runtime state, e.g. running|exited")
    health: str | None = None
    exit_code: int | None = None
    ports: list[int] = Field(default_factory=list, description="Published host ports")


class EndpointCheck(_Model):
    url: str
    healthy: bool
    message: str
    latency_ms: float | None = None


class ServiceStatus(_Model):
    name: str
    state: ServiceState
    containers: list[ContainerInfo] = Field(default_factory=list)
    last_checked: str = Field(default_factory=utc_now)
    port: int | None = None
    health: str | None = None
    endpoint: EndpointCheck | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def unknown(cls, name: str, error: ErrorKind, message: str) -> "ServiceStatus":
        return cls(name=name, state=ServiceState.UNKNOWN, error=error, message=message)


class ActionResult(_Model):
    service: str
    action: ActionKind
    success: bool
    state: ServiceState
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False
    duration_ms: float = 0.0
    error: ErrorKind | None = None
    message: str | None = None


class LogsResult(_Model):
    success: bool
    lines: list[str] = Field(default_factory=list)
    error: ErrorKind | None = None
    message: str | None = None

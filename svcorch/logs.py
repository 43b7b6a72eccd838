from __future__ import annotations

from typing import Any

from docker.errors import NotFound

from .docker_ops import RUNTIME_ERRORS, ClientFactory, list_service_containers
from .errors import ErrorKind
from .models import LogsResult
from .registry import ServiceLocation
from .settings import Settings, settings as default_settings


def clamp_lines(lines: int | None, default: int, maximum: int) -> int:
    """Missing -> default; anything else forced into [1, maximum]."""
    if lines is None:
        lines = default
    try:
        n = int(lines)
    except (TypeError, ValueError):
        n = default
    return max(1, min(maximum, n))


def _split_timestamp(line: str) -> tuple[str, str]:
    ts, sep, rest = line.partition(" ")
    if sep and ts[:4].isdigit() and "T" in ts:
        return ts, rest
    return "", line


def _container_lines(container: Any, n: int) -> list[tuple[str, str]]:
    try:
        raw = container.logs(stdout=True, stderr=True, tail=n, timestamps=True)
    except NotFound:
        # Removed after it was listed.
        return []
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
    return [_split_timestamp(line) for line in text.splitlines() if line.strip()]


class LogCollector:
    def __init__(self, client_factory: ClientFactory, config: Settings | None = None):
        self.client_factory = client_factory
        self.config = config or default_settings

    def tail(self, location: ServiceLocation, lines: int | None = None) -> LogsResult:
        """Newest `lines` lines of combined stdout/stderr across the service's containers.

        Lines from several containers are merged by timestamp and prefixed
        with the container name.
        """
        n = clamp_lines(lines, self.config.log_default_lines, self.config.log_max_lines)
        try:
            client = self.client_factory()
            containers = list_service_containers(client, location.directory)
            per_container = [(c.name, _container_lines(c, n)) for c in containers]
        except RUNTIME_ERRORS as e:
            return LogsResult(
                success=False,
                error=ErrorKind.RUNTIME_UNAVAILABLE,
                message=f"Container runtime is not reachable: {e}",
            )

        prefix = len(per_container) > 1
        merged: list[tuple[str, str]] = []
        for name, entries in per_container:
            merged.extend((ts, f"{name} | {msg}" if prefix else msg) for ts, msg in entries)
        merged.sort(key=lambda item: item[0])
        return LogsResult(success=True, lines=[msg for _, msg in merged[-n:]])

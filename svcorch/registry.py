from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass

from .errors import NotFoundError, SecurityError
from .settings import Settings, settings as default_settings


SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,63}$")


def validate_service_name(name: str) -> None:
    # Explicit checks first so the error says what was wrong.
    if not isinstance(name, str) or not name:
        raise SecurityError("Service name is required.")
    if "\x00" in name:
        raise SecurityError("Service name must not contain null bytes.", service=name)
    if ".." in name or "/" in name or "\\" in name or os.sep in name:
        raise SecurityError("Service name must not contain path separators or '..'.", service=name)
    if not SERVICE_NAME_RE.match(name):
        raise SecurityError(
            "Invalid service name. Use letters, numbers, '-' and '_' (max 64 chars).",
            service=name,
        )


def _is_within(root: str, path: str) -> bool:
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        # Different drives on Windows.
        return False


@dataclass(frozen=True)
class ServiceLocation:
    project_root: str
    name: str
    directory: str
    compose_file: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.project_root, self.name)


class ServiceRegistry:
    """Maps (project root, service name) to a validated service directory."""

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    def find_descriptor(self, directory: str) -> str | None:
        for fname in self.config.compose_files:
            candidate = os.path.join(directory, fname)
            if os.path.isfile(candidate):
                return candidate
        return None

    def resolve(self, project_root: str, service_name: str) -> ServiceLocation:
        """Return the canonical location of a service.

        Raises SecurityError for unsafe names or paths that leave the project
        root, NotFoundError when the directory or its compose file is missing.
        """
        validate_service_name(service_name)
        if not project_root or "\x00" in project_root:
            raise SecurityError("Invalid project root.", service=service_name)

        root = os.path.realpath(project_root)
        directory = os.path.realpath(os.path.join(root, service_name))
        if directory == root or not _is_within(root, directory):
            raise SecurityError("Service path escapes the project root.", service=service_name)
        # One directory, one name: a link to another service would get its own lock.
        if directory != os.path.join(root, service_name):
            raise SecurityError("Service directory must not be a link to another location.", service=service_name)

        if not os.path.isdir(directory):
            raise NotFoundError(f"Service directory not found: {service_name}", service=service_name)
        descriptor = self.find_descriptor(directory)
        if descriptor is None:
            raise NotFoundError(
                f"No compose file in service '{service_name}' (looked for {', '.join(self.config.compose_files)}).",
                service=service_name,
            )
        return ServiceLocation(project_root=root, name=service_name, directory=directory, compose_file=descriptor)

    def discover(self, project_root: str) -> list[ServiceLocation]:
        """All services directly under project_root, sorted by name.

        Hidden and ignored directories, names that fail validation and
        directories without a compose file are skipped.
        """
        root = os.path.realpath(project_root)
        if not os.path.isdir(root):
            raise NotFoundError(f"Project root not found: {project_root}")

        found: list[ServiceLocation] = []
        for entry in sorted(os.scandir(root), key=lambda e: e.name):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            if entry.name in self.config.ignored_dirs:
                continue
            try:
                found.append(self.resolve(root, entry.name))
            except (SecurityError, NotFoundError):
                continue
        return found

    def read_port(self, location: ServiceLocation) -> int | None:
        """Port recorded in memory-bank/.sync-config.json, if any."""
        path = os.path.join(location.directory, "memory-bank", ".sync-config.json")
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return None
        port = data.get("port") if isinstance(data, dict) else None
        try:
            return int(port) if port is not None else None
        except (TypeError, ValueError):
            return None

from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from threading import Event

from . import db, docker_ops
from .docker_ops import ClientFactory, docker_available
from .errors import ErrorKind, SecurityError
from .executor import ActionExecutor
from .logs import LogCollector
from .models import ActionKind, ActionResult, LogsResult, ServiceStatus
from .probe import StatusProbe
from .registry import ServiceLocation, ServiceRegistry
from .runtime import FifoSemaphore, ServiceLockTable
from .settings import Settings, settings as default_settings


class Orchestrator:
    """Public lifecycle operations for the services of a project.

    Owns the per-service lock table and the global process slots. Service
    names are always re-validated here, whatever the caller already checked.
    Resolution problems raise SecurityError / NotFoundError; everything that
    happens after resolution is reported in the returned result.
    """

    def __init__(self, config: Settings | None = None, client_factory: ClientFactory | None = None):
        self.config = config or default_settings
        self.client_factory = client_factory or docker_ops.client_factory(self.config)
        self.registry = ServiceRegistry(self.config)
        self.locks = ServiceLockTable()
        self.slots = FifoSemaphore(max(1, self.config.max_concurrent_actions))
        self.executor = ActionExecutor(
            self.locks,
            self.slots,
            self.config,
            runtime_check=lambda: docker_available(self.client_factory),
        )
        self.probe = StatusProbe(self.client_factory, self.registry, self.config)
        self.logs = LogCollector(self.client_factory, self.config)
        db.init_db(self.config)

    def events(self, limit: int = 100, service_name: str | None = None) -> list[dict]:
        """Latest journaled events for this orchestrator's configuration."""
        return db.latest_events(limit=limit, service_name=service_name, config=self.config)

    def locate(self, directory: str, name: str) -> ServiceLocation:
        """Resolve a service directory handed in by the caller.

        The directory's parent is taken as the project root and the name is
        resolved against it; the result must be the directory itself.
        """
        if not directory or "\x00" in directory:
            raise SecurityError("Invalid service directory.", service=name)
        requested = os.path.realpath(directory)
        location = self.registry.resolve(os.path.dirname(requested), name)
        if location.directory != requested:
            raise SecurityError("Service name does not match its directory.", service=name)
        return location

    # Actions

    def run_action(
        self,
        directory: str,
        name: str,
        action: ActionKind | str,
        timeout: float | None = None,
        cancel: Event | None = None,
    ) -> ActionResult:
        """Run one lifecycle action; `timeout` (seconds) becomes the caller deadline."""
        try:
            kind = ActionKind(action)
        except ValueError:
            raise ValueError(f"Unknown action: {action!r}") from None
        location = self.locate(directory, name)
        deadline = None if timeout is None else time.monotonic() + timeout
        return self.executor.run(location, kind, deadline=deadline, cancel=cancel)

    def start_service(self, directory: str, name: str, **kw) -> ActionResult:
        return self.run_action(directory, name, ActionKind.START, **kw)

    def stop_service(self, directory: str, name: str, **kw) -> ActionResult:
        return self.run_action(directory, name, ActionKind.STOP, **kw)

    def build_service(self, directory: str, name: str, **kw) -> ActionResult:
        return self.run_action(directory, name, ActionKind.BUILD, **kw)

    def restart_service(self, directory: str, name: str, **kw) -> ActionResult:
        return self.run_action(directory, name, ActionKind.RESTART, **kw)

    # Reads (never take the service lock)

    def get_service_status(self, directory: str, name: str) -> ServiceStatus:
        location = self.locate(directory, name)
        return self.probe.probe(location, in_flight=self.locks.in_flight(location.key))

    def get_service_logs(self, directory: str, name: str, lines: int | None = None) -> LogsResult:
        location = self.locate(directory, name)
        return self.logs.tail(location, lines)

    def get_all_services_status(self, project_root: str) -> list[ServiceStatus]:
        """Probe every service of a project with bounded parallelism.

        One failing probe yields an `unknown` entry; it never fails the call.
        """
        locations = self.registry.discover(project_root)
        if not locations:
            return []
        workers = max(1, min(self.config.probe_concurrency, len(locations)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="svcorch-probe") as pool:
            return list(pool.map(self._probe_isolated, locations))

    def _probe_isolated(self, location: ServiceLocation) -> ServiceStatus:
        try:
            return self.probe.probe(location, in_flight=self.locks.in_flight(location.key))
        except Exception as e:
            db.record(
                "ERROR",
                f"Probe failed: {type(e).__name__}: {e}",
                service_name=location.name,
                project_root=location.project_root,
                config=self.config,
            )
            return ServiceStatus.unknown(location.name, ErrorKind.FAILED, f"Probe failed: {type(e).__name__}: {e}")

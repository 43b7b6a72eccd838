from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...], split=None) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    parts = split(raw) if split else raw.split(",")
    return tuple(p.strip() for p in parts if p.strip())


@dataclass(frozen=True)
class Settings:
    # Event journal (empty path disables it)
    db_path: str = os.getenv("SVCORCH_DB_PATH", "svcorch.db")

    # Compose CLI
    compose_command: tuple[str, ...] = _env_list("SVCORCH_COMPOSE_COMMAND", ("docker", "compose"), split=shlex.split)
    compose_files: tuple[str, ...] = _env_list(
        "SVCORCH_COMPOSE_FILES",
        ("docker-compose.local.yml", "docker-compose.yml", "compose.yaml", "compose.yml"),
    )

    # Per-action budgets (seconds). Builds get a much longer budget.
    start_timeout_s: float = _env_float("SVCORCH_START_TIMEOUT_S", 120.0)
    stop_timeout_s: float = _env_float("SVCORCH_STOP_TIMEOUT_S", 60.0)
    restart_timeout_s: float = _env_float("SVCORCH_RESTART_TIMEOUT_S", 120.0)
    build_timeout_s: float = _env_float("SVCORCH_BUILD_TIMEOUT_S", 900.0)
    kill_grace_s: float = _env_float("SVCORCH_KILL_GRACE_S", 10.0)

    # Output capture
    max_output_bytes: int = _env_int("SVCORCH_MAX_OUTPUT_BYTES", 64 * 1024)
    diagnostic_tail_lines: int = _env_int("SVCORCH_DIAGNOSTIC_TAIL_LINES", 20)

    # Concurrency
    max_concurrent_actions: int = _env_int("SVCORCH_MAX_CONCURRENT_ACTIONS", 4)
    probe_concurrency: int = _env_int("SVCORCH_PROBE_CONCURRENCY", 8)
    docker_timeout_s: int = _env_int("SVCORCH_DOCKER_TIMEOUT_S", 10)

    # Logs
    log_default_lines: int = _env_int("SVCORCH_LOG_DEFAULT_LINES", 100)
    log_max_lines: int = _env_int("SVCORCH_LOG_MAX_LINES", 5000)

    # Optional HTTP health probe of running services
    http_health_check: bool = _env_bool("SVCORCH_HTTP_HEALTH_CHECK", False)
    health_host: str = os.getenv("SVCORCH_HEALTH_HOST", "localhost")
    health_path: str = os.getenv("SVCORCH_HEALTH_PATH", "/health")
    health_timeout_s: float = _env_float("SVCORCH_HEALTH_TIMEOUT_S", 2.0)

    # Discovery
    ignored_dirs: tuple[str, ...] = field(
        default_factory=lambda: _env_list("SVCORCH_IGNORED_DIRS", ("node_modules", "memory-bank"))
    )

    def timeout_for(self, action: str) -> float:
        """Budget in seconds for one action kind ("start", "stop", "build", "restart")."""
        kind = getattr(action, "value", action)
        return float(getattr(self, f"{kind}_timeout_s"))


settings = Settings()

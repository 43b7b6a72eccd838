import hashlib
import json
import os
import sys
import textwrap

import pytest
from docker.errors import DockerException, NotFound

# Ensure project root is importable (so `import svcorch` / `import cli` work without installing).
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from svcorch import db  # noqa: E402
from svcorch.settings import Settings  # noqa: E402


STATE_FILE = ".fake-compose.json"

# Stand-in for `docker compose`: keeps container state in a JSON file inside the
# service directory. Per-verb behaviour is switched on by marker files:
#   .fake-sleep-<verb>  (seconds)   .fake-fail-<verb>   .fake-noise-<verb> (bytes)
FAKE_COMPOSE = textwrap.dedent(
    '''
    import json
    import os
    import sys
    import time

    args = sys.argv[1:]
    i = args.index("--project-directory")
    directory = args[i + 1]
    verb = args[i + 2]
    state_path = os.path.join(directory, ".fake-compose.json")
    name = os.path.basename(directory)
    container = f"{name}-{name}-1"


    def marker(kind):
        p = os.path.join(directory, f".fake-{kind}-{verb}")
        if not os.path.exists(p):
            return None
        with open(p) as fh:
            return fh.read().strip() or "1"


    delay = marker("sleep")
    if delay:
        time.sleep(float(delay))
    noise = marker("noise")
    if noise:
        sys.stdout.write("x" * int(noise))
        sys.stdout.flush()
    if marker("fail"):
        sys.stderr.write(f"error: {verb} failed for {name}\\n")
        sys.exit(3)

    if verb == "up":
        state = {
            "containers": [
                {
                    "name": container,
                    "state": "running",
                    "exit_code": 0,
                    "ports": [8000],
                    "logs": [
                        "2024-01-01T00:00:01.000000000Z booting",
                        "2024-01-01T00:00:02.000000000Z listening on 8000",
                    ],
                }
            ]
        }
        with open(state_path, "w") as fh:
            json.dump(state, fh)
        sys.stderr.write(f" Container {container}  Started\\n")
    elif verb == "down":
        if os.path.exists(state_path):
            os.remove(state_path)
            sys.stderr.write(f" Container {container}  Removed\\n")
    elif verb == "restart":
        if os.path.exists(state_path):
            sys.stderr.write(f" Container {container}  Started\\n")
    elif verb == "build":
        sys.stdout.write(f"#1 building {name}\\n")
    sys.exit(0)
    '''
)


class FakeContainer:
    def __init__(self, data):
        self.name = data["name"]
        self.id = hashlib.sha256(self.name.encode()).hexdigest()
        self.short_id = self.id[:12]
        self.status = data.get("state", "running")
        health = data.get("health")
        ports = {
            f"{p}/tcp": [{"HostIp": "0.0.0.0", "HostPort": str(p)}] for p in data.get("ports", [])
        }
        self.attrs = {
            "State": {
                "Status": self.status,
                "ExitCode": data.get("exit_code", 0),
                "Health": {"Status": health} if health else None,
            },
            "Config": {"Image": data.get("image", "fake:latest")},
            "NetworkSettings": {"Ports": ports},
        }
        self._logs = list(data.get("logs", []))
        self._gone = data.get("gone", False)

    def logs(self, stdout=True, stderr=True, tail="all", timestamps=False):
        if self._gone:
            raise NotFound(f"No such container: {self.name}")
        lines = self._logs if tail == "all" else self._logs[-int(tail):]
        if not timestamps:
            lines = [line.partition(" ")[2] for line in lines]
        return ("\n".join(lines) + "\n").encode() if lines else b""


class _FakeContainers:
    def __init__(self, client):
        self.client = client

    def list(self, all=False, filters=None):
        label = (filters or {}).get("label", [""])[0]
        directory = label.split("=", 1)[1] if "=" in label else ""
        self.client.list_calls.append(directory)
        if self.client.down or directory in self.client.unreachable_dirs:
            raise DockerException("Error while fetching server API version: connection refused")
        if directory in self.client.containers_by_dir:
            return [FakeContainer(d) for d in self.client.containers_by_dir[directory]]
        path = os.path.join(directory, STATE_FILE)
        if not os.path.exists(path):
            return []
        with open(path) as fh:
            return [FakeContainer(d) for d in json.load(fh)["containers"]]


class FakeDockerClient:
    """The slice of docker.DockerClient the orchestrator uses."""

    def __init__(self, down=False, unreachable_dirs=(), containers_by_dir=None):
        self.down = down
        self.unreachable_dirs = set(unreachable_dirs)
        self.containers_by_dir = dict(containers_by_dir or {})
        self.list_calls = []
        self.containers = _FakeContainers(self)

    def ping(self):
        if self.down:
            raise DockerException("Error while fetching server API version: connection refused")
        return True


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Isolated event journal per test."""
    path = str(tmp_path / "events.db")
    monkeypatch.setattr(db, "settings", Settings(db_path=path))
    db.init_db()
    return path


@pytest.fixture
def fake_compose(tmp_path):
    path = tmp_path / "fake_compose.py"
    path.write_text(FAKE_COMPOSE)
    return str(path)


@pytest.fixture
def make_settings(fake_compose, event_db):
    def _make(**overrides):
        values = dict(
            db_path=event_db,
            compose_command=(sys.executable, fake_compose),
            start_timeout_s=20.0,
            stop_timeout_s=20.0,
            restart_timeout_s=20.0,
            build_timeout_s=20.0,
            kill_grace_s=2.0,
            max_concurrent_actions=4,
            probe_concurrency=4,
            http_health_check=False,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


class Project:
    """A project root on disk with helpers to lay out services."""

    def __init__(self, root):
        self.root = root

    def __str__(self):
        return str(self.root)

    def add(self, name, descriptor="docker-compose.local.yml"):
        d = self.root / name
        d.mkdir()
        if descriptor:
            (d / descriptor).write_text(f"services:\n  {name}:\n    build: .\n")
        return str(d)

    def dir(self, name):
        return os.path.realpath(str(self.root / name))

    def mark(self, name, kind, verb, value="1"):
        (self.root / name / f".fake-{kind}-{verb}").write_text(str(value))

    def unmark(self, name, kind, verb):
        (self.root / name / f".fake-{kind}-{verb}").unlink()


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "projects" / "p1"
    root.mkdir(parents=True)
    return Project(root)


@pytest.fixture
def fake_client():
    return FakeDockerClient()


@pytest.fixture
def make_orchestrator(make_settings, fake_client):
    from svcorch.orchestrator import Orchestrator

    def _make(**overrides):
        return Orchestrator(make_settings(**overrides), client_factory=lambda: fake_client)

    return _make

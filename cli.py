from __future__ import annotations

import argparse
import json
import os
import sys

from svcorch.errors import ServiceError
from svcorch.orchestrator import Orchestrator


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Service Orchestrator CLI")
    p.add_argument("--project", default=os.getcwd(), help="Project root containing the service directories")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("services", help="Status of every service in the project")

    s_status = sub.add_parser("status", help="Status of one service")
    s_status.add_argument("service")

    for action in ("start", "stop", "build", "restart"):
        s_act = sub.add_parser(action, help=f"{action.capitalize()} a service")
        s_act.add_argument("service")
        s_act.add_argument("--timeout", type=float, default=None, help="Overall deadline in seconds")

    s_logs = sub.add_parser("logs", help="Tail a service's logs")
    s_logs.add_argument("service")
    s_logs.add_argument("--lines", type=int, default=None)

    s_ev = sub.add_parser("events", help="Show journaled events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--service", default=None)

    args = p.parse_args(argv)

    orch = Orchestrator()

    if args.cmd == "events":
        _print(orch.events(limit=args.limit, service_name=args.service))
        return 0

    project = os.path.abspath(args.project)

    try:
        if args.cmd == "services":
            _print([s.to_dict() for s in orch.get_all_services_status(project)])
            return 0

        directory = os.path.join(project, args.service)

        if args.cmd == "status":
            _print(orch.get_service_status(directory, args.service).to_dict())
            return 0

        if args.cmd == "logs":
            res = orch.get_service_logs(directory, args.service, args.lines)
            _print(res.to_dict())
            return 0 if res.success else 1

        res = orch.run_action(directory, args.service, args.cmd, timeout=args.timeout)
        _print(res.to_dict())
        return 0 if res.success else 1
    except ServiceError as e:
        _print({"success": False, "error": e.kind.value, "message": str(e)})
        return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

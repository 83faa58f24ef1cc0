from __future__ import annotations

import argparse
import logging
import math
import sys
from pathlib import Path
from types import FrameType

import uvicorn

from .app.dispatcher import TaskDispatcher
from .app.results import dump_results
from .app.runner import AnsiblePlaybookRunner, PlaybookExecutionError
from .app.settings import Settings, get_settings


def _parse_args(argv: list[str] | None, settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="playbook-api",
        description="Web console and runner for ad-hoc ansible playbooks.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web console.")
    serve.add_argument("--host", default=settings.host, help="Address to listen on.")
    serve.add_argument("--port", type=int, default=settings.port, help="Port to listen on.")

    run = subparsers.add_parser("run", help="Run one playbook directly and store its report.")
    run.add_argument("-p", "--playbook", type=Path, required=True, help="Playbook YAML path.")
    run.add_argument("-i", "--inventory", type=Path, required=True, help="Inventory path.")
    run.add_argument("-o", "--output", type=Path, required=True, help="Result JSON path.")
    run.add_argument(
        "--timeout",
        type=float,
        default=settings.execution_timeout_s,
        help="Seconds before the run is killed.",
    )
    return parser.parse_args(argv)


class DrainingServer(uvicorn.Server):
    """uvicorn server that closes the task queue as soon as a shutdown signal lands.

    uvicorn runs the lifespan shutdown only after its graceful period; run
    triggers arriving within that period get 503.
    """

    def __init__(self, config: uvicorn.Config, dispatcher: TaskDispatcher) -> None:
        super().__init__(config)
        self.dispatcher = dispatcher

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        self.dispatcher.close()
        super().handle_exit(sig, frame)


def build_server(settings: Settings, *, host: str, port: int) -> DrainingServer:
    from .main import create_app

    app = create_app(settings_override=settings)
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=math.ceil(settings.shutdown_grace_s),
    )
    return DrainingServer(config, app.state.dispatcher)


def _serve(args: argparse.Namespace, settings: Settings) -> int:
    build_server(settings, host=args.host, port=args.port).run()
    return 0


def _run(args: argparse.Namespace, settings: Settings) -> int:
    runner = AnsiblePlaybookRunner(
        binary=settings.ansible_playbook_bin,
        ssh_private_key_file=settings.ssh_private_key_file,
        ssh_user=settings.ssh_user,
        ssh_port=settings.ssh_port,
    )
    try:
        results = runner.run(args.playbook, args.inventory, args.timeout)
    except PlaybookExecutionError as exc:
        print(f"Run failed: {exc}", file=sys.stderr)
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(dump_results(results), encoding="utf-8")

    for outcome in results.host_outcomes():
        if outcome.state == "skipped":
            continue
        print(f"> Host: {outcome.host}")
        print(f"> Task: {outcome.task}")
        if outcome.result.cmd:
            print(f"> Cmd : {outcome.result.cmd}")
        print(f"> Stat: {outcome.state}")
        if outcome.state == "failed":
            print(f"> Err : {outcome.result.stderr or outcome.result.msg}")
        elif outcome.state != "unreachable":
            print(f"> Out : {outcome.result.stdout}")
    print(f"Result written to: {args.output}")
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    args = _parse_args(argv, settings)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if args.command == "serve":
        return _serve(args, settings)
    return _run(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())

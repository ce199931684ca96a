from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable

from . import __version__
from .config import (
    DEFAULT_WORKERS,
    RunConfig,
    SharedConfig,
    SubmitConfig,
    parse_duration,
    validate_config,
)
from .errors import ConfigError
from .harness import RunResult, serve, submit
from .queues import queue_loop
from .run import RunSignal, interrupt_on_signals
from .transports import TRANSPORTS, get_transport

LOGGER = logging.getLogger("netfoolery.main")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def duration(text: str) -> float:
    return parse_duration(text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netfoolery",
        description="Test/Benchmark network connection rates",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    protocols = parser.add_subparsers(dest="protocol", required=True, metavar="<protocol>")

    for transport in TRANSPORTS.values():
        defaults = transport.defaults
        proto = protocols.add_parser(
            transport.name, help=transport.summary, description=transport.summary
        )
        proto.add_argument(
            "--host", default=defaults.host, help=f"the {transport.label} host to use"
        )
        proto.add_argument(
            "--port", type=int, default=defaults.port, help=f"the {transport.label} port to use"
        )
        proto.add_argument(
            "--timeout",
            type=duration,
            default=defaults.timeout,
            help="the timeout to use for connections and closures (e.g. 10s, 500ms)",
        )
        if transport.supports_keep_alives:
            proto.add_argument(
                "--keep-alives",
                action=argparse.BooleanOptionalAction,
                default=defaults.keep_alives,
                help=f"enable {transport.label} 'keep-alives'",
            )

        commands = proto.add_subparsers(dest="command", required=True, metavar="<command>")
        serve_parser = commands.add_parser(transport.serve_command, help=transport.serve_summary)
        _add_duration_argument(serve_parser)

        submit_parser = commands.add_parser("submit", help=transport.submit_summary)
        submit_parser.add_argument(
            "--workers",
            type=int,
            default=DEFAULT_WORKERS,
            help="the number of workers to use (-1 = unlimited)",
        )
        submit_parser.add_argument(
            "--fail-fast",
            action=argparse.BooleanOptionalAction,
            default=True,
            help="stop launching work after the first failure",
        )
        _add_duration_argument(submit_parser)

    queues = protocols.add_parser(
        "queues",
        help="Test/Benchmark raw in-process queue hand-off rates",
        description="Test/Benchmark raw in-process queue hand-off rates",
    )
    _add_duration_argument(queues)
    return parser


def _add_duration_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--duration",
        type=duration,
        default=None,
        help="stop automatically after this long (default: run until interrupted)",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_config(args: argparse.Namespace) -> RunConfig:
    transport = get_transport(args.protocol)
    shared = SharedConfig(
        host=args.host,
        port=args.port,
        timeout=args.timeout,
        keep_alives=getattr(args, "keep_alives", transport.defaults.keep_alives)
        and transport.supports_keep_alives,
    )
    submit_config = SubmitConfig(
        workers=getattr(args, "workers", DEFAULT_WORKERS),
        fail_fast=getattr(args, "fail_fast", True),
    )
    return validate_config(RunConfig(shared=shared, submit=submit_config, duration=args.duration))


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    run_signal = RunSignal()
    try:
        runner, run_duration = _plan(args, run_signal)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    if run_duration is not None:
        run_signal.cancel_after(run_duration)

    with interrupt_on_signals(run_signal):
        try:
            result = runner()
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("run failed", exc_info=True)
            print(f"\nerror: {exc}", file=sys.stderr)
            return EXIT_FAILURE

    LOGGER.info("run finished: total=%d duration=%.2fs", result.total, result.duration_s)
    return EXIT_OK


def _plan(
    args: argparse.Namespace, run_signal: RunSignal
) -> tuple[Callable[[], RunResult], float | None]:
    if args.protocol == "queues":
        if args.duration is not None and args.duration <= 0:
            raise ConfigError(f"invalid duration '{args.duration:g}s'")
        return (lambda: queue_loop(run_signal)), args.duration

    config = build_config(args)
    transport = get_transport(args.protocol)
    action = submit if args.command == "submit" else serve
    return (lambda: action(transport, config, run_signal)), config.duration


if __name__ == "__main__":
    sys.exit(main())

"""Application entry point for the gpubsub daemon."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.pubsub_bus import PubSubBus
from adapters.subprocess_runner import SubprocessRunner
from adapters.systemd_service import SystemdManager, build_spec
from client import build_subscriber
from core.config import ConfigError, build_config
from core.coordinator import Coordinator
from core.dispatcher import Dispatcher
from core.harness import run_test_messages
from core.ports import BusError
from core.runner import resolve_subscriptions

NAME = "GPUBSUB"
FONT = "tarty-1"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def _configure_logging(verbose: bool, log_file: str) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[handler], force=True)


def _install_signal_handlers(coordinator: Coordinator) -> None:
    def _handler(signum, _frame) -> None:
        logging.getLogger(__name__).info("Received signal %s", signal.Signals(signum).name)
        coordinator.shutdown()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _run(args: argparse.Namespace) -> None:
    logger = logging.getLogger(__name__)

    logger.debug("Reading subscriptions file: %s", args.subs)
    config = build_config(settings.load_config_file(args.subs))
    logger.info("Project %s, %s subscriptions", config.project, len(config.subscriptions))

    dispatcher = Dispatcher(SubprocessRunner())

    # Any subscription carrying test messages switches the whole run offline.
    if config.has_tests:
        replayed = run_test_messages(config.subscriptions, dispatcher)
        logger.info("Replayed %s test messages", replayed)
        return

    subscriber = build_subscriber(args.creds)
    bus = PubSubBus(subscriber, config.project)
    try:
        logger.debug("Checking subscriptions")
        subscriptions = resolve_subscriptions(config.subscriptions, bus)
        coordinator = Coordinator.for_subscriptions(subscriptions, bus, dispatcher)
        _install_signal_handlers(coordinator)
        logger.info("Listening for incoming messages...")
        coordinator.run()
    finally:
        bus.close()


def _service_arguments(args: argparse.Namespace) -> list[str]:
    """Flags the installed service passes back to the run command."""

    arguments = ["--subs", os.path.abspath(args.subs)]
    if args.creds:
        arguments += ["--creds", os.path.abspath(args.creds)]
    if args.verbose:
        arguments.append("--verbose")
    if args.logto:
        arguments += ["--logto", os.path.abspath(args.logto)]
    return arguments


def _install(args: argparse.Namespace) -> None:
    message = SystemdManager().install(build_spec(_service_arguments(args)))
    logging.getLogger(__name__).info(message)


def _uninstall(_args: argparse.Namespace) -> None:
    message = SystemdManager().uninstall()
    logging.getLogger(__name__).info(message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpubsub",
        description="Listens for Google Cloud Pub/Sub messages and performs specified commands",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "install", "uninstall"],
        help="run the daemon (default) or manage the systemd user service",
    )
    parser.add_argument(
        "--creds",
        default=settings.CREDS_PATH,
        help="Optional credentials Json file path (from Google Cloud console)",
    )
    parser.add_argument("--subs", default=settings.SUBS_PATH, help="Subscriptions Yaml file path")
    parser.add_argument("--verbose", action="store_true", help="Verbose output for debugging")
    parser.add_argument("--logto", default=settings.LOG_FILE, help="File path where to log")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = logging.getLogger(__name__)

    if args.command in {"install", "uninstall"}:
        _configure_logging(args.verbose, "")
        handler = _install if args.command == "install" else _uninstall
        try:
            handler(args)
        except RuntimeError as exc:
            logger.error("Failed to %s: %s", args.command, exc)
            return 1
        return 0

    if not args.logto:
        _print_banner()
    _configure_logging(args.verbose, args.logto)
    try:
        _run(args)
    except ConfigError as exc:
        logger.error("Failed to parse subscriptions: %s", exc)
        return 1
    except (BusError, RuntimeError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted during startup")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

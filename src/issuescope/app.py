"""Application entry point for the issuescope watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console

from issuescope import __version__, settings
from issuescope.adapters.actions import build_actions
from issuescope.adapters.config_watcher import ConfigFileStream
from issuescope.adapters.email_sender import EmailError, SMTPEmailSender
from issuescope.adapters.github_source import GitHubError, GitHubNotFoundError
from issuescope.adapters.item_formatting import format_items
from issuescope.adapters.prometheus_metrics import PrometheusMetrics
from issuescope.client import DEFAULT_RETRIES, DEFAULT_TIMEOUT_SECONDS, build_github_source
from issuescope.core.config import Config
from issuescope.core.ports import MetricsPort, NullMetrics
from issuescope.core.scheduler import Scheduler
from issuescope.core.watcher import Watcher

NAME = "ISSUESCOPE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", [settings.TOKEN_ENV, settings.SMTP_PASSWORD_ENV]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict, verbose: bool = False) -> None:
    config = dict(config or {})
    if verbose:
        config["enabled"] = True
        config["level"] = "DEBUG"
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/issuescope.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _raw_config_or_exit(path: str) -> dict:
    try:
        return settings.load_json_config(path)
    except settings.ConfigError as exc:
        print(exc)
        sys.exit(1)


def _logging_config_or_exit(raw: dict) -> dict:
    try:
        return settings.config_section(raw.get("logging"), "logging")
    except settings.ConfigError as exc:
        print(exc)
        sys.exit(1)


async def _load_and_validate(
    path: str,
    retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Config:
    """Load the config file and run both local and remote validation."""

    config = settings.load_config(path)
    sender = SMTPEmailSender(config.email) if config.email else None
    async with build_github_source(config, retries=retries, timeout=timeout) as github:
        await settings.validate_remote(config, github, sender)
    return config


def _load_or_exit(args: argparse.Namespace) -> Config:
    try:
        return asyncio.run(_load_and_validate(args.config, args.gh_retries, args.gh_timeout))
    except (settings.ConfigError, GitHubError, EmailError) as exc:
        print(f"unable to load config from {args.config}: {exc}")
        sys.exit(1)


async def _watch(args: argparse.Namespace, metrics: MetricsPort) -> None:
    scheduler = Scheduler()
    watcher = Watcher(
        scheduler,
        source_factory=lambda config: build_github_source(
            config, retries=args.gh_retries, timeout=args.gh_timeout, metrics=metrics
        ),
        actions_factory=build_actions,
        metrics=metrics,
    )

    async def loader(path: str) -> Config:
        return await _load_and_validate(path, args.gh_retries, args.gh_timeout)

    stream = ConfigFileStream(args.config, loader, metrics)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass

    runner = asyncio.create_task(watcher.run(stream), name="config-stream")
    stopper = asyncio.create_task(stop.wait(), name="stop-signal")
    try:
        done, _ = await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if runner in done:
            # The stream only ends on error, usually a bad initial config.
            runner.result()
        LOGGER.info("Shutdown requested")
    finally:
        stopper.cancel()
        if not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        await watcher.shutdown()
        LOGGER.info("All polls stopped")


def _run(args: argparse.Namespace) -> None:
    _print_banner()
    raw = _raw_config_or_exit(args.config)
    _configure_logging(_logging_config_or_exit(raw), args.verbose)

    LOGGER.info("Starting issuescope")

    try:
        metrics_config = settings.parse_metrics(raw.get("metrics"))
    except settings.ConfigError as exc:
        print(exc)
        sys.exit(1)
    metrics = PrometheusMetrics()
    if metrics_config.enabled:
        metrics.serve(metrics_config.port)

    try:
        asyncio.run(_watch(args, metrics))
    except (settings.ConfigError, GitHubError, EmailError) as exc:
        LOGGER.error("Unable to load initial config file: %s", exc)
        print(f"unable to load config from {args.config}: {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def _validate_config(args: argparse.Namespace) -> None:
    _configure_logging(_logging_config_or_exit(_raw_config_or_exit(args.config)), args.verbose)
    _load_or_exit(args)
    print("config is valid")


def _whoami(args: argparse.Namespace) -> None:
    try:
        config = settings.load_config(args.config)
    except settings.ConfigError as exc:
        print(f"unable to load config from {args.config}: {exc}")
        sys.exit(1)

    async def _run_whoami() -> str:
        async with build_github_source(config, args.gh_retries, args.gh_timeout) as github:
            return await github.whoami()

    try:
        login = asyncio.run(_run_whoami())
    except GitHubError as exc:
        print(f"unable to get user: {exc}")
        sys.exit(1)
    print(login)


def _check(args: argparse.Namespace) -> None:
    try:
        config = settings.load_config(args.config)
    except settings.ConfigError as exc:
        print(f"unable to load config from {args.config}: {exc}")
        sys.exit(1)

    async def _run_check() -> None:
        async with build_github_source(config, args.gh_retries, args.gh_timeout) as github:
            for watch in config.watches:
                for repo in watch.repos:
                    await github.check_repository(repo)

    try:
        asyncio.run(_run_check())
    except GitHubNotFoundError as exc:
        print(exc)
        sys.exit(2)
    except GitHubError as exc:
        print(exc)
        sys.exit(1)
    print("all repositories exist")


def _list(args: argparse.Namespace) -> None:
    _configure_logging(_logging_config_or_exit(_raw_config_or_exit(args.config)), args.verbose)
    config = _load_or_exit(args)
    watch = config.get_watch(args.watch)
    if watch is None:
        print(f"unknown watch with name '{args.watch}'")
        sys.exit(1)

    metrics = NullMetrics()

    async def _run_list() -> list:
        items = []
        async with build_github_source(config, args.gh_retries, args.gh_timeout, metrics) as github:
            for repo in watch.repos:
                items.extend(
                    await github.list_candidates(repo, watch.issue_filter, watch.matcher, watch_name=watch.name)
                )
        return items

    try:
        items = asyncio.run(_run_list())
    except GitHubError as exc:
        print(f"unable to list issues: {exc}")
        sys.exit(1)
    Console().print_json(format_items(items))


def _version(args: argparse.Namespace) -> None:
    print(__version__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="issuescope", description="Watch GitHub issues based on labels")
    parser.add_argument("--config", default=settings.DEFAULT_CONFIG_PATH, help="Path to config file")
    parser.add_argument(
        "--gh-retries",
        type=int,
        default=DEFAULT_RETRIES,
        help="Number of times requests to GitHub should be retried on failure",
    )
    parser.add_argument(
        "--gh-timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Maximum number of seconds a request to GitHub can take",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug log messages")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Watch the config file and poll GitHub")
    list_parser = subparsers.add_parser("list", help="List matching items for one watch as JSON")
    list_parser.add_argument("watch", help="Name of the watch to list")
    subparsers.add_parser(
        "check",
        help="Check repositories referenced in the config exist. Exits with rc 2 if one does not.",
    )
    subparsers.add_parser("whoami", help="Print the user the configured token belongs to")
    subparsers.add_parser("validate-config", help="Load and fully validate the config file")
    subparsers.add_parser("version", help="Print the version")
    return parser


COMMANDS = {
    "run": _run,
    "list": _list,
    "check": _check,
    "whoami": _whoami,
    "validate-config": _validate_config,
    "version": _version,
}


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    command = COMMANDS.get(args.command or "run", _run)
    command(args)


if __name__ == "__main__":
    main()

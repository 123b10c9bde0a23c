"""Command-line entry point.

Loads the configuration, authenticates against GitHub, then runs the metric
exposition server and the monitor scheduler side by side on one event loop
until SIGINT or SIGTERM.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from .config.exceptions import ConfigurationError
from .config.loader import load_config
from .config.models import Config
from .github.auth import AuthProvider, GitHubAppAuth, PersonalAccessTokenAuth
from .github.client import GitHubClient
from .github.exceptions import GitHubAuthenticationError
from .metrics.registry import MetricRegistry
from .monitors.dispatcher import MonitorDispatcher
from .server import DEFAULT_HOST, DEFAULT_PORT, ExpositionServer
from .worker import MonitorScheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="github-exporter",
        description="Export GitHub workflow, pull request and rate limit "
        "metrics for Prometheus",
    )
    parser.add_argument(
        "-c",
        "--config",
        default="./config.yaml",
        help="The monitoring config (default: %(default)s)",
    )
    parser.add_argument(
        "--pat",
        default=os.environ.get("APP_PAT"),
        help="Personal access token [env: APP_PAT]",
    )
    parser.add_argument(
        "--app-id",
        default=os.environ.get("APP_ID"),
        help="The GitHub App ID [env: APP_ID]",
    )
    parser.add_argument(
        "--app-secret",
        default=os.environ.get("APP_SECRET"),
        help="The GitHub App private key, PEM text or a path to it [env: APP_SECRET]",
    )
    parser.add_argument(
        "--host", default=DEFAULT_HOST, help="Interface to serve metrics on"
    )
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help="Port to serve metrics on"
    )
    parser.add_argument("--log-level", default="INFO", help="Log level")
    return parser


def build_auth(parser: argparse.ArgumentParser, args: argparse.Namespace) -> AuthProvider:
    """Pick the credential from the parsed arguments.

    A personal access token excludes the GitHub App options, and the App ID
    and private key must be given together.
    """
    if args.pat and (args.app_id or args.app_secret):
        parser.error("--pat cannot be used with --app-id or --app-secret")
    if bool(args.app_id) != bool(args.app_secret):
        parser.error("--app-id and --app-secret must be given together")

    try:
        if args.pat:
            return PersonalAccessTokenAuth(args.pat)
        if args.app_id:
            return GitHubAppAuth(args.app_id, _read_private_key(args.app_secret))
    except GitHubAuthenticationError as e:
        parser.error(str(e))

    parser.error("a GitHub credential is required: --pat or --app-id/--app-secret")


def _read_private_key(value: str) -> str:
    if value.lstrip().startswith("-----BEGIN"):
        return value
    path = Path(value).expanduser()
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return value


async def run_exporter(
    config: Config,
    auth: AuthProvider,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve metrics and run the monitor loop until a shutdown signal."""
    registry = MetricRegistry()
    server = ExpositionServer(registry, host=host, port=port)

    async with GitHubClient(auth) as client:
        scheduler = MonitorScheduler(config, client, MonitorDispatcher(registry))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown, scheduler, sig)

        await server.start()
        try:
            await scheduler.run()
        finally:
            await server.stop()


def _request_shutdown(scheduler: MonitorScheduler, sig: signal.Signals) -> None:
    logger.info(f"Received signal {sig.name}, initiating shutdown...")
    scheduler.stop()


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the exporter."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    auth = build_auth(parser, args)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        asyncio.run(run_exporter(config, auth, host=args.host, port=args.port))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()

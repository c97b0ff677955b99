from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence

from dotenv import load_dotenv

from . import service
from .config import CONFIG_ENV_VAR, AgentConfig
from .errors import AgentError, ConfigError
from .observability import configure_console_logging, configure_logging
from .scheduler import AgentRunner
from .update import check_and_update
from .version import __version__

logger = logging.getLogger("agentquelia")

Handler = Callable[[argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentquelia",
        description="Cross-platform power data collection agent",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"Path to configuration file (default: ${CONFIG_ENV_VAR} or the platform config dir)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the agent in foreground")
    run.set_defaults(handler=_cmd_run)

    install = sub.add_parser("install", help="Install as system service")
    install.add_argument("--user", action="store_true", help="Install as user-level service (macOS only)")
    install.set_defaults(handler=_cmd_install)

    uninstall = sub.add_parser("uninstall", help="Uninstall system service")
    uninstall.set_defaults(handler=_cmd_uninstall)

    update = sub.add_parser("update", help="Check for and apply updates")
    update.add_argument("--force", action="store_true", help="Force update even if on latest version")
    update.set_defaults(handler=_cmd_update)

    config = sub.add_parser("config", help="Show current configuration")
    config.add_argument("--show-secrets", action="store_true", help="Show full configuration including secrets")
    config.set_defaults(handler=_cmd_config)

    validate = sub.add_parser("validate", help="Validate configuration file")
    validate.set_defaults(handler=_cmd_validate)

    status = sub.add_parser("status", help="Show service status")
    status.set_defaults(handler=_cmd_status)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    # Load .env (if present) so ${VAR} references in the config resolve.
    load_dotenv()

    args = build_parser().parse_args(argv)
    handler: Handler = args.handler
    try:
        return handler(args)
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config).expanduser() if args.config else None


def _cmd_run(args: argparse.Namespace) -> int:
    config = AgentConfig.load(_config_path(args))
    log_path = configure_logging(
        config.logging,
        verbose=args.verbose or config.agent.verbose,
        instance_id=config.agent.instance_id,
    )

    logger.info(
        "Starting Agentquelia (version=%s instance_id=%s log=%s)",
        __version__,
        config.agent.instance_id,
        log_path or "console",
    )
    AgentRunner(config).run()
    logger.info("Agentquelia stopped")
    return 0


def _cmd_install(args: argparse.Namespace) -> int:
    configure_console_logging("debug" if args.verbose else "info")
    hint = service.install(user_level=args.user, config_path=_config_path(args))
    print("Service installed successfully")
    print(hint)
    return 0


def _cmd_uninstall(args: argparse.Namespace) -> int:
    configure_console_logging("debug" if args.verbose else "info")
    service.uninstall()
    print("Service uninstalled successfully")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:  # noqa: ARG001
    print(f"Service status: {service.status()}")
    return 0


def _cmd_update(args: argparse.Namespace) -> int:
    configure_console_logging("debug" if args.verbose else "info")
    logger.info("Checking for updates...")

    config = AgentConfig.load(_config_path(args))
    if check_and_update(config, force=args.force):
        logger.info("Update installed successfully. Please restart the agent.")
    else:
        logger.info("Already running the latest version.")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = AgentConfig.load(_config_path(args))
    print(config.redacted_summary(show_secrets=args.show_secrets))
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    try:
        AgentConfig.load(_config_path(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    print("Configuration is valid.")
    return 0

#!/usr/bin/env python3
"""
Command-line interface for mailrelay.

Usage:
    mailrelay serve [--host HOST] [--port PORT] [--debug] [--config FILE]
    mailrelay check [--config FILE]
    mailrelay generate-key [--bytes N]
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from mailrelay import __version__
from mailrelay.common.config import LoggingSettings, Settings, get_settings
from mailrelay.common.exceptions import ConfigurationError, DispatchError

logger = logging.getLogger("mailrelay.cli")


def setup_logging(settings: LoggingSettings, debug: bool = False) -> None:
    """
    Configure the root logger.

    Args:
        settings: Logging settings (level, format, optional file).
        debug: Force DEBUG level.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.file:
        handlers.append(logging.FileHandler(settings.file))

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, settings.level),
        format=settings.format,
        handlers=handlers,
        force=True,
    )

    if not debug:
        # Reduce noise from third-party libraries in non-debug mode
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="mailrelay",
        description="mailrelay - HTTP to SMTP mail relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Start the gateway on a custom port:
    mailrelay serve --port 5000

  Check that the SMTP relay answers:
    mailrelay check

  Generate a value for GATEWAY_API_KEY:
    mailrelay generate-key

Environment Variables:
  MAILRELAY_ENVIRONMENT   development, test or production
  MAILRELAY_CONFIG_FILE   Path to a TOML configuration file
  SMTP_HOST               SMTP relay host
  SMTP_DIAGNOSTIC         Send through a disposable Ethereal account
  SCAN_ENABLED            Scan attachments with VirusTotal
  GATEWAY_API_KEY         Key expected in the X-API-Key header
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mailrelay {__version__}",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Load environment variables from this file (default: .env)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP gateway")
    serve.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind (default: 0.0.0.0 or GATEWAY_HOST)",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind (default: 3000 or GATEWAY_PORT)",
    )
    serve.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    serve.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (TOML format)",
    )

    check = subparsers.add_parser(
        "check", help="Verify the SMTP transport and exit")
    check.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (TOML format)",
    )

    generate = subparsers.add_parser(
        "generate-key", help="Print a random hex key for API keys or secrets")
    generate.add_argument(
        "--bytes",
        type=int,
        default=32,
        help="Number of random bytes (default: 32)",
    )

    return parser.parse_args(argv)


def _load_settings(config: Optional[str]) -> Settings:
    if config:
        config_path = Path(config)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config}")
        os.environ["MAILRELAY_CONFIG_FILE"] = str(config_path)
        get_settings.cache_clear()
    return get_settings()


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    from mailrelay.gateway import create_app, get_gateway_settings

    gateway_settings = get_gateway_settings()
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.debug:
        overrides["debug"] = True
    if overrides:
        gateway_settings = gateway_settings.model_copy(update=overrides)

    app = create_app(settings=settings, gateway_settings=gateway_settings)

    logger.info(
        "Gateway configuration",
        extra={
            "host": gateway_settings.host,
            "port": gateway_settings.port,
            "debug": gateway_settings.debug,
            "environment": settings.environment,
        },
    )

    app.run(
        host=gateway_settings.host,
        port=gateway_settings.port,
        debug=gateway_settings.debug,
        threaded=True,
        use_reloader=False,
    )
    return 0


def cmd_check(settings: Settings) -> int:
    from mailrelay.gateway.smtp import MailDispatcher

    settings.validate_required()
    dispatcher = MailDispatcher.from_settings(settings.smtp)

    try:
        status = asyncio.run(dispatcher.get_status())
    except DispatchError as e:
        logger.error("SMTP transport check failed: %s", e)
        print(f"FAILED: {e.message}", file=sys.stderr)
        return 1

    print(f"OK: transport {status['mode']} is {status['status']}")
    return 0


def cmd_generate_key(num_bytes: int) -> int:
    from mailrelay.gateway.api.auth import generate_api_key

    if num_bytes < 16:
        print("Error: use at least 16 bytes", file=sys.stderr)
        return 2
    print(generate_api_key(num_bytes))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for mailrelay.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = parse_args(argv)

    if args.command == "generate-key":
        return cmd_generate_key(args.bytes)

    load_dotenv(args.env_file)

    try:
        settings = _load_settings(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    debug = getattr(args, "debug", False) or settings.debug
    setup_logging(settings.logging, debug)

    logger.info("Starting mailrelay v%s (%s)", __version__, args.command)

    try:
        if args.command == "serve":
            return cmd_serve(args, settings)
        return cmd_check(settings)

    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""CLI entry point for wa-archiver."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from wa_archiver.app import ArchiverApp
from wa_archiver.config import load_config, resolve_timezone, validate_config
from wa_archiver.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="wa-archiver",
        description="Passive WhatsApp message archiver with daily CSV reports",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Start the archiver")
    start_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    start_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    check_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Timezone: {resolve_timezone(config.timezone)}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Session: {config.whatsapp.session_path}")
    print(f"  Media: {config.whatsapp.media_dir}")
    print(f"  Email provider: {config.email.provider} (report to: {config.email.report_to or '-'})")
    report = config.daily_report
    if report.enabled:
        print(f"  Daily report: {report.hour:02d}:{report.minute:02d}")
    else:
        print("  Daily report: disabled")
    print(f"  Command numbers: {', '.join(config.commands.allowed_numbers) or '(none)'}")
    if config.api.enabled:
        print(f"  API: http://{config.api.host}:{config.api.port}")

    warnings = validate_config(config)
    for warning in warnings:
        print(f"  Warning: {warning}", file=sys.stderr)


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and adjust it")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, json_output=config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = ArchiverApp(config)
        try:
            await app.start()
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()

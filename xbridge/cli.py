"""Command-line interface for running and configuring xbridge."""

from __future__ import annotations

import argparse
import sys

from pathlib import Path
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import XBridgeSettings


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="xbridge",
        description="xbridge login server and configuration tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the auth API server",
    )
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    args = parser.parse_args(argv)

    if args.command == "serve":
        return handle_serve(args)
    if args.command == "config":
        return handle_config(args)
    parser.print_help()
    return 0


def handle_serve(args: argparse.Namespace) -> int:
    """Handle the serve command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    import uvicorn

    from .app import create_app
    from .config import get_settings
    from .log import configure_from_settings

    settings = get_settings()
    configure_from_settings(settings.log)

    try:
        app = create_app(settings)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    uvicorn.run(
        app,
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        log_level=settings.log.level.lower(),
    )
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import XBridgeSettings

    settings = XBridgeSettings()

    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = format_config_show(settings)

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def format_config_show(settings: XBridgeSettings) -> str:
    """Format configuration for display, secrets redacted."""
    lines = ["xbridge configuration", "=" * 40]
    for section_name, section_data in settings.redacted_dump().items():
        lines.append("")
        lines.append(f"[{section_name}]")
        lines.extend(f"  {field} = {value!r}" for field, value in section_data.items())
    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())

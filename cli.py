#!/usr/bin/env python3
"""
Command Line Interface for the Scan Launcher

Collects the scan start options, validates the combination and hands the
resulting request to the scanner backend, relaying its status updates until
the backend closes the stream.

Usage:
    python cli.py start [options]
    python cli.py options

Example:
    python cli.py start --tenant contoso.sharepoint.com --authmode application \\
        --certpath "My|LocalMachine|3FG496B468BE3828E2359A8A6F092FB701C8CDB1"

Author: Scan Launcher Contributors
License: MIT
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from launcher_config import LauncherConfigError, LauncherSettings, configure_logging
from scan_dispatcher import ChannelTransportFailure, ConsoleStatusSink, connect_scanner, dispatch_start
from scan_options import (
    START_SCHEMA,
    OptionSpec,
    OptionValidationError,
    ValueType,
    describe_schema,
    validate_options,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TRANSPORT_FAILURE = 1
EXIT_INVALID_OPTIONS = 2
EXIT_INTERRUPTED = 130


def _dest(spec: OptionSpec) -> str:
    return spec.name.lower()


def build_parser(settings: LauncherSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Scanner launcher')
    parser.add_argument('--scanner-url', default=None,
                        help=f'Scanner backend URL (default: {settings.scanner_url})')
    parser.add_argument('--enable-test-options', action='store_true',
                        help='Expose test-only start options')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.required = True

    start = subparsers.add_parser('start', help='starts a scan')
    for spec in START_SCHEMA:
        help_text = spec.help
        if spec.debug_only and not settings.enable_test_options:
            help_text = argparse.SUPPRESS

        kwargs = {'dest': _dest(spec), 'default': None, 'help': help_text}
        if spec.value_type == ValueType.LIST:
            kwargs['nargs'] = '+'
        start.add_argument(spec.flag, **kwargs)

    subparsers.add_parser('options', help='lists the start options and their defaults')
    return parser


def raw_options_from_args(args: argparse.Namespace, schema: Sequence[OptionSpec] = START_SCHEMA) -> Dict[str, List[str]]:
    """Collect the options the user actually typed, keyed by option name"""
    raw = {}
    for spec in schema:
        value = getattr(args, _dest(spec), None)
        if value is None:
            continue
        raw[spec.name] = list(value) if isinstance(value, list) else [value]
    return raw


def print_options(console: Console, show_debug: bool):
    table = Table(title="Start options")
    table.add_column("Option", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Default", style="yellow")
    table.add_column("Description", style="white")

    for row in describe_schema():
        if row["debug_only"] and not show_debug:
            continue
        flag = row["flag"] + (" (required)" if row["required"] else "")
        table.add_row(flag, row["type"], row["default"], row["help"])

    console.print(table)


async def run_start(resolved, settings: LauncherSettings, console: Console) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops and non-main threads
            logger.debug(f"Signal handler for {sig!r} not available")

    try:
        async with connect_scanner(settings) as channel:
            result = await dispatch_start(
                resolved,
                channel,
                ConsoleStatusSink(console),
                include_test_options=settings.enable_test_options,
                cancel=cancel,
            )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    if not result.completed:
        console.print("[yellow]Status relay interrupted, the scan keeps running in the scanner[/yellow]")
        return EXIT_INTERRUPTED
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    console = Console()

    try:
        settings = LauncherSettings.from_env()
    except LauncherConfigError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        return EXIT_INVALID_OPTIONS

    parser = build_parser(settings)
    args = parser.parse_args(argv)

    if args.scanner_url or args.enable_test_options:
        settings = replace(
            settings,
            scanner_url=(args.scanner_url or settings.scanner_url).rstrip("/"),
            enable_test_options=settings.enable_test_options or args.enable_test_options,
        )

    configure_logging(settings)

    if args.command == 'options':
        print_options(console, settings.enable_test_options)
        return EXIT_OK

    try:
        resolved = validate_options(
            raw_options_from_args(args),
            allow_debug_options=settings.enable_test_options,
        )
    except OptionValidationError as e:
        logger.error(f"Invalid start options: {e}")
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return EXIT_INVALID_OPTIONS

    console.print(f"[bold blue]🚀 Starting {resolved.mode.value} scan...[/bold blue]")

    try:
        return asyncio.run(run_start(resolved, settings, console))
    except ChannelTransportFailure as e:
        logger.error(f"Scanner channel failed: {e}")
        console.print(f"[red]Error: scanner channel failed: {escape(str(e))}[/red]")
        return EXIT_TRANSPORT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

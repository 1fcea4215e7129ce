"""
Command-line interface for the live server.

Provides:
- Serving a directory with deferred browser launch
- Resolved option display
"""

import sys
import argparse
import logging
import json
import threading
from typing import Any, Dict, List, Optional
from enum import Enum

from core import (
    LIVE_SERVER_CONFIG,
    LOG_FORMAT,
    LOG_LEVEL,
    BUILTIN_OPTIONS,
    EventBus,
    EventTopic,
    PluginManager,
)
from server_mgmt import LiveServer, build_base_url


PLUGIN_NAME = "live-server"


class ExitCode(int, Enum):
    """Process exit status of `live-server`"""
    SUCCESS = 0
    ERROR = 1           # server failed to start
    INVALID_ARGS = 2


class OutputFormat(str, Enum):
    """How serve URLs and resolved options are printed"""
    TEXT = "text"
    JSON = "json"


# -v count -> logging level; uvicorn's own verbosity follows logLevel
_VERBOSITY_LEVELS = [LOG_LEVEL, "INFO", "DEBUG"]


def setup_logging(verbose: int) -> None:
    """
    Configure root logging for a live-server run.

    Args:
        verbose: Number of -v flags (capped at 2, same as logLevel)
    """
    level = _VERBOSITY_LEVELS[min(verbose, len(_VERBOSITY_LEVELS) - 1)]
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


def parse_mount(value: str) -> List[str]:
    """
    Parse a ROUTE:DIR mount argument.

    Raises:
        argparse.ArgumentTypeError: If the value has no separator
    """
    route, sep, directory = value.partition(':')
    if not sep or not route or not directory:
        raise argparse.ArgumentTypeError(f"Mount must be ROUTE:DIR, got '{value}'")
    return [route, directory]


def build_options(args) -> Dict[str, Any]:
    """
    Convert parsed arguments into live server options.

    Args:
        args: Parsed command arguments

    Returns:
        Options mapping for `LiveServer.start`
    """
    options: Dict[str, Any] = {
        "root": args.root,
        "host": args.host,
        "port": args.port,
        "logLevel": min(args.verbose, 2),
    }

    if args.no_browser:
        options["open"] = False
    elif args.open:
        options["open"] = args.open if len(args.open) > 1 else args.open[0]

    if args.browser:
        options["browser"] = args.browser

    if args.https_cert or args.https_key:
        options["https"] = {
            "certfile": args.https_cert,
            "keyfile": args.https_key,
        }

    if args.cors:
        options["cors"] = True
    if args.mount:
        options["mount"] = args.mount
    if args.entry_file:
        options["file"] = args.entry_file

    return options


def cmd_serve(args, stop_event: Optional[threading.Event] = None) -> int:
    """
    Serve a directory until interrupted.

    Args:
        args: Parsed command arguments
        stop_event: Event ending the serve loop (default: wait for Ctrl+C)

    Returns:
        Exit code
    """
    bus = EventBus()
    plugins = PluginManager(eventbus=bus)
    plugins.add(PLUGIN_NAME, LiveServer())

    try:
        handle = bus.trigger_sync(EventTopic.START, build_options(args))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        plugins.remove_all()
        return ExitCode.ERROR.value

    options = bus.trigger_sync(EventTopic.OPTIONS_GET)
    url = build_base_url(handle, options)

    if args.format == OutputFormat.JSON.value:
        print(json.dumps({"url": url, "root": options["root"]}, indent=2))
    else:
        print(f"Serving '{options['root']}' at {url}")
        print("Press Ctrl+C to stop.")

    stop_event = stop_event or threading.Event()
    try:
        # Wake periodically so Ctrl+C is delivered on every platform
        while not stop_event.wait(0.5):
            pass
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        plugins.remove_all()

    return ExitCode.SUCCESS.value


def cmd_options(args) -> int:
    """
    Display the options a serve invocation would start with.

    Args:
        args: Parsed command arguments

    Returns:
        Exit code
    """
    options = {**BUILTIN_OPTIONS, **build_options(args)}

    if args.format == OutputFormat.JSON.value:
        print(json.dumps(options, indent=2))
    else:
        print("=== Live Server Options ===\n")
        for key, value in options.items():
            print(f"{key}: {value}")

    return ExitCode.SUCCESS.value


def add_server_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the arguments shared by `serve` and `options`."""
    parser.add_argument(
        'root',
        nargs='?',
        default=LIVE_SERVER_CONFIG.default_root,
        help='Directory to serve (default: current directory)'
    )
    parser.add_argument(
        '--host',
        default=LIVE_SERVER_CONFIG.default_host,
        help=f'Address to bind (default: {LIVE_SERVER_CONFIG.default_host})'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=LIVE_SERVER_CONFIG.default_port,
        help=f'Port to listen on, 0 for any free port (default: {LIVE_SERVER_CONFIG.default_port})'
    )
    parser.add_argument(
        '--no-browser',
        action='store_true',
        help='Do not open a browser'
    )
    parser.add_argument(
        '--open',
        action='append',
        metavar='PATH',
        help='Path to open in the browser (repeatable)'
    )
    parser.add_argument(
        '--browser',
        help='Browser to open (webbrowser controller name)'
    )
    parser.add_argument(
        '--https-cert',
        help='PEM certificate for HTTPS'
    )
    parser.add_argument(
        '--https-key',
        help='PEM private key for HTTPS'
    )
    parser.add_argument(
        '--cors',
        action='store_true',
        help='Allow cross-origin requests'
    )
    parser.add_argument(
        '--mount',
        action='append',
        type=parse_mount,
        metavar='ROUTE:DIR',
        help='Serve DIR under ROUTE (repeatable)'
    )
    parser.add_argument(
        '--entry-file',
        metavar='FILE',
        help='File served for unknown paths (single page apps)'
    )


def create_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Returns:
        Configured parser
    """
    parser = argparse.ArgumentParser(
        prog='live-server',
        description="Live development server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                   # Serve the current directory and open a browser
  %(prog)s serve site --port 0     # Serve ./site on a free port
  %(prog)s serve --open /docs/     # Open /docs/ once listening
  %(prog)s options --no-browser    # Show resolved options
        """
    )

    # Global options
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (can be repeated: -v, -vv)'
    )
    parser.add_argument(
        '--format',
        choices=[f.value for f in OutputFormat],
        default=OutputFormat.TEXT.value,
        help='Output format'
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    serve_parser = subparsers.add_parser(
        'serve',
        help='Serve a directory'
    )
    add_server_arguments(serve_parser)

    options_parser = subparsers.add_parser(
        'options',
        help='Show resolved server options'
    )
    add_server_arguments(options_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code
    """
    parser = create_parser()

    # Parse arguments
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    # Route to command handler
    if not args.command:
        parser.print_help()
        return ExitCode.SUCCESS.value

    if args.command == 'serve':
        return cmd_serve(args)
    elif args.command == 'options':
        return cmd_options(args)
    else:
        print(f"Error: Unknown command '{args.command}'", file=sys.stderr)
        return ExitCode.INVALID_ARGS.value


if __name__ == '__main__':
    sys.exit(main())

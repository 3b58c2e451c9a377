import argparse
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from .commands import default_timeout
from .core import build_registry, log_startup_info, render_metrics
from .daemon import DEFAULT_LISTEN_ADDRESS, DEFAULT_METRICS_PATH, ExporterDaemon, parse_listen_address
from .ibv_devices import get_devices
from .types import CollectorError

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def setup_logging(debug=False, level=None):
    """Configure logging with the specified debug level."""
    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, (level or os.environ.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    # Configure the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(log_level)
    formatter = logging.Formatter(
        '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S%z'
    )
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    log = logging.getLogger("erdma-exporter")
    log.setLevel(log_level)

    return log


def _timeout_arg(value: str) -> Optional[float]:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout {value!r}")
    return seconds if seconds > 0 else None


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--command-timeout",
        type=_timeout_arg,
        default=default_timeout(),
        help="Deadline in seconds for each ibv_devices/eadm call, 0 to disable "
             "(default: $ERDMA_COMMAND_TIMEOUT or 10)."
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output (overrides --log-level)."
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Logging level (default: $LOG_LEVEL or INFO)."
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="erdma-exporter",
        description="Expose ERDMA driver and device counters to Prometheus."
    )
    subparsers = parser.add_subparsers(dest="cmd", required=True)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve metrics over HTTP."
    )
    serve_parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=DEFAULT_LISTEN_ADDRESS,
        help=f"Address on which to expose metrics and web interface (default: {DEFAULT_LISTEN_ADDRESS})."
    )
    serve_parser.add_argument(
        "--web.telemetry-path",
        dest="metrics_path",
        default=DEFAULT_METRICS_PATH,
        help=f"Path under which to expose metrics (default: {DEFAULT_METRICS_PATH})."
    )
    serve_parser.add_argument(
        "--no-startup-info",
        action="store_false",
        dest="startup_info",
        help="Skip the diagnostic device listing at startup."
    )
    _add_common_arguments(serve_parser)

    collect_parser = subparsers.add_parser(
        "collect",
        help="Run a single scrape and print the metrics in text exposition format."
    )
    collect_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout).",
        type=Path,
        default=None
    )
    _add_common_arguments(collect_parser)

    devices_parser = subparsers.add_parser(
        "devices",
        help="List the ERDMA devices reported by ibv_devices as JSON."
    )
    _add_common_arguments(devices_parser)

    return parser


def _serve(args: argparse.Namespace, log: logging.Logger) -> int:
    try:
        parse_listen_address(args.listen_address)
        registry = build_registry(timeout=args.command_timeout)
    except ValueError as e:
        log.error(f"Failed to create ERDMA collector: {e}")
        return 1

    if args.startup_info:
        log_startup_info(timeout=args.command_timeout)

    daemon = ExporterDaemon(registry, {
        'listen_address': args.listen_address,
        'metrics_path': args.metrics_path,
    })
    try:
        daemon.start()
    except OSError as e:
        log.error(f"Failed to start HTTP server on {args.listen_address}: {e}")
        return 1
    return 0


def _collect(args: argparse.Namespace, log: logging.Logger) -> int:
    try:
        registry = build_registry(timeout=args.command_timeout)
    except ValueError as e:
        log.error(f"Failed to create ERDMA collector: {e}")
        return 1

    output = render_metrics(registry)
    if args.output:
        log.debug(f"Writing metrics to {args.output}")
        try:
            args.output.write_bytes(output)
        except OSError as e:
            log.error(f"Error writing to {args.output}: {e}", exc_info=args.debug)
            return 1
        log.info(f"Metrics written to {args.output}")
    else:
        sys.stdout.write(output.decode('utf-8'))
    return 0


def _devices(args: argparse.Namespace, log: logging.Logger) -> int:
    try:
        devices = get_devices(timeout=args.command_timeout)
    except CollectorError as e:
        log.error(f"Failed to get ERDMA devices: {e}")
        return 1
    print(json.dumps([device.to_dict() for device in devices], indent=2))
    return 0


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    # Allow a single string of arguments (e.g. from a container CMD)
    if isinstance(args, list) and len(args) == 1:
        args = shlex.split(args[0])

    parser = build_parser()
    parsed_args = parser.parse_args(args)

    log = setup_logging(debug=parsed_args.debug, level=parsed_args.log_level)
    log.debug(f"Parsed arguments: {vars(parsed_args)}")

    handlers = {
        "serve": _serve,
        "collect": _collect,
        "devices": _devices,
    }
    try:
        return handlers[parsed_args.cmd](parsed_args, log)
    except Exception as e:
        log.error(f"Error: {e}", exc_info=parsed_args.debug)
        return 1


if __name__ == "__main__":
    sys.exit(main())

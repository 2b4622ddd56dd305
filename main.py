#!/usr/bin/env python3
"""
CLI application running the telemetry collector as a standalone process.
Samples the built-in sources and reports them until interrupted.
"""
import argparse
import logging
import sys
import threading
from typing import Any, Dict, List, Optional

from collectors import default_sources
from telemetry import config as telemetry_config
from telemetry.config import MetricsProperties, load_json_object
from telemetry.endpoint import Endpoint, HttpEndpoint
from telemetry.exceptions import ConfigurationError
from telemetry.lite import MetricsLite
from telemetry.metrics import Metrics
from telemetry.server_id import ServerIdResolver, resolve_server_id
from telemetry.source import SourceRegistry

# Setup logging
logger = logging.getLogger(__name__)


class DryRunEndpoint(Endpoint):
    """Endpoint logging payloads instead of sending them."""

    def consume(self, payload: bytes, cancel_event: Optional[threading.Event] = None) -> None:
        logger.info("DRY RUN: Would send %s bytes: %s", len(payload), payload.decode('utf-8'))


def setup_logging(log_level: str) -> None:
    """
    Configure the root logger.

    Args:
        log_level (str): Level name such as DEBUG or INFO

    Raises:
        ValueError: If the level name is unknown
    """
    logging.basicConfig(
        level=log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def fill_missing(args: argparse.Namespace, values: Dict[str, Any]) -> None:
    """
    Set every argument that was not given on the command line.

    Args:
        args (argparse.Namespace): Parsed arguments, updated in place
        values (dict): Fallback values; dashed keys match their flag names
    """
    for key, value in values.items():
        dest = key.replace('-', '_')
        if getattr(args, dest, None) is None:
            setattr(args, dest, value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Sample metric sources and report them to a remote collector.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--config-file', type=str,
                        help='Path to JSON configuration file')
    parser.add_argument('--log-level', type=str, default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Log level (default: LOG_LEVEL or INFO)')
    parser.add_argument('--owner', type=str, default=None,
                        help='Name of the application reporting metrics')
    parser.add_argument('--server-url', type=str, default=None,
                        help='URL of the metrics collector')
    parser.add_argument('--sample-interval', type=float, default=None,
                        help='Seconds between samples')
    parser.add_argument('--report-interval', type=float, default=None,
                        help='Seconds between reports')
    parser.add_argument('--server-id-file', type=str, default=None,
                        help='Path to the file persisting the server id')
    parser.add_argument('--duration', type=float, default=None,
                        help='Stop after this many seconds (runs until interrupted if omitted)')
    parser.add_argument('--lite', action='store_true', default=None,
                        help='Post one sample per interval instead of batched reports')
    parser.add_argument('--insecure', action='store_true', default=None,
                        help='Allow a plain http collector URL')
    parser.add_argument('--dry-run', action='store_true', default=None,
                        help="Log reports instead of sending them")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments, filling gaps from the config file.

    Args:
        argv (list, optional): Arguments to parse. Defaults to sys.argv.

    Returns:
        argparse.Namespace: The merged arguments

    Raises:
        ConfigurationError: If the config file cannot be loaded
    """
    args = build_parser().parse_args(argv)
    if args.config_file:
        fill_missing(args, load_json_object(args.config_file))

    fill_missing(args, {
        'log_level': telemetry_config.LOG_LEVEL,
        'owner': 'telemetry-collector',
        'server_url': telemetry_config.SERVER_URL,
        'server_id_file': telemetry_config.SERVER_ID_FILE,
        'lite': False,
        'insecure': False,
        'dry_run': False,
    })
    return args


def build_endpoint(args: argparse.Namespace) -> Endpoint:
    if args.dry_run:
        return DryRunEndpoint()
    if args.lite:
        return HttpEndpoint.lite(args.server_url, allow_insecure=args.insecure)
    return HttpEndpoint(args.server_url, allow_insecure=args.insecure)


def build_instance(args: argparse.Namespace):
    """
    Create the metrics instance described by the arguments.

    Args:
        args (argparse.Namespace): Parsed arguments

    Returns:
        Metrics or MetricsLite: The stopped instance
    """
    resolver = ServerIdResolver(args.server_id_file)
    endpoint = build_endpoint(args)

    if args.lite:
        interval = args.sample_interval or telemetry_config.LITE_INTERVAL
        return MetricsLite(args.owner, resolver, endpoint, interval=interval)

    properties = MetricsProperties.from_env()
    properties.set(MetricsProperties.SAMPLE_INTERVAL_KEY, args.sample_interval)
    properties.set(MetricsProperties.REPORT_INTERVAL_KEY, args.report_interval)

    server_id = properties.server_id or resolve_server_id(resolver)
    registry = SourceRegistry(default_sources())
    return Metrics.create(args.owner, server_id, registry, properties, [endpoint])


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to parse arguments and run the collector."""
    try:
        args = parse_args(argv)
    except ConfigurationError as e:
        setup_logging(telemetry_config.LOG_LEVEL)
        logger.error("Invalid configuration: %s", e)
        return 1

    setup_logging(args.log_level)
    try:
        instance = build_instance(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    stopped = threading.Event()
    instance.start()
    try:
        stopped.wait(args.duration)
    except KeyboardInterrupt:
        logger.info("Collection interrupted by user.")
    finally:
        instance.stop()

    logger.info("Collection completed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

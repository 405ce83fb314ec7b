#!/usr/bin/env python3
"""
Magellan - Command Line Interface.

Usage:
    # Scan a subnet for Redfish services (results go to the scan cache)
    magellan scan --subnet 172.16.0.0/24 --port 443

    # Show what the last scans found
    magellan list --format json

    # Crawl every cached BMC and send the records to the inventory service
    export MASTER_KEY=$(magellan secrets generatekey)
    magellan secrets store default root:password
    magellan collect --host https://smd.example.com --output-dir ./inventory

    # Crawl a single BMC
    magellan crawl https://172.16.0.101 -u root -p password

    # Push saved collect output, drop a host from the scan cache
    magellan send https://smd.example.com -d @inventory.json
    magellan cache remove 172.16.0.101:443

    # Manage the secret store
    magellan secrets list -f nodes.json

Global flags (--concurrency, --timeout, --cache, ...) may also come from a
YAML config file (--config or MAGELLAN_CONFIG) and from the environment.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .config import DEFAULT_SECRETS_FILE, MagellanConfig, build_config
from .creds.cli import add_secrets_parser, handle_secrets
from .creds.store import MasterKeyMissing, SecretStoreError, open_store
from .discovery.cache import ScanCache
from .discovery.collector import CollectParams, collect_inventory
from .discovery.crawler import (
    CrawlerConfig, crawl_bmc_for_managers, crawl_bmc_for_systems, get_bmc_info,
    get_user_pass,
)
from .discovery.events import ConsoleEventPrinter, EventEmitter
from .discovery.formats import DataFormat, data_format_from_string, marshal
from .discovery.idmap import pick_id_mapper
from .discovery.models import RemoteAsset
from .discovery.scanner import build_host_list, parse_target, scan_for_assets
from .discovery.sink import SmdClient, build_headers, load_records, send_records
from .exceptions import ConfigError, MagellanError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging; --verbose switches to DEBUG."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # urllib3 logs every connection at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='magellan',
        description='Redfish BMC discovery and inventory tool',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  magellan scan --subnet 172.16.0.0 --subnet-mask 255.255.255.0
  magellan list
  magellan collect --host https://smd.example.com -o inventory.json
  magellan crawl https://172.16.0.101 -u root -p password
  magellan send https://smd.example.com -d @inventory.json
  magellan cache remove --all
  magellan secrets generatekey
        """
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    # Global flags default to None so config file/env values are kept
    parser.add_argument(
        '--concurrency', '-j',
        type=int,
        help='Number of concurrent workers (default: -1, one per host up to 255)'
    )
    parser.add_argument(
        '--timeout', '-t',
        type=int,
        help='Request timeout in seconds (default: 30)'
    )
    parser.add_argument(
        '--config', '-c',
        dest='config_path',
        help='YAML config file (or set MAGELLAN_CONFIG)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        default=None,
        help='Enable verbose output'
    )
    parser.add_argument(
        '--access-token',
        help='Bearer token for the inventory service (or set MAGELLAN_ACCESS_TOKEN)'
    )
    parser.add_argument(
        '--cache',
        dest='cache_path',
        help='Scan cache database (default: /tmp/<user>/magellan/magellan.db)'
    )
    parser.add_argument(
        '--no-color',
        action='store_true',
        dest='no_color',
        help='Disable colored output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # scan
    scan_parser = subparsers.add_parser('scan', help='Scan hosts and subnets for BMCs')
    scan_parser.add_argument(
        '--host',
        action='append',
        dest='hosts',
        help='Host to scan (repeatable; host, host:port or scheme://host:port)'
    )
    scan_parser.add_argument(
        '--subnet',
        action='append',
        dest='subnets',
        help='Subnet to scan (repeatable; CIDR or address with --subnet-mask)'
    )
    scan_parser.add_argument(
        '--subnet-mask',
        action='append',
        dest='subnet_masks',
        help='Mask for the --subnet at the same position (default: 255.255.255.0)'
    )
    scan_parser.add_argument(
        '--port',
        action='append',
        type=int,
        dest='ports',
        help='Port to scan (repeatable; default: 443)'
    )
    scan_parser.add_argument('--scheme', help='Scheme for the Redfish check (default: https)')
    scan_parser.add_argument(
        '--disable-probing',
        action='store_true',
        default=None,
        help='Keep every open port, without checking for a Redfish service'
    )
    scan_parser.add_argument(
        '--insecure',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Skip TLS verification for the Redfish check (default: on)'
    )
    scan_parser.add_argument(
        '--format', '-F',
        choices=['list', 'json', 'yaml'],
        default='list',
        help='Output format (default: list)'
    )

    # list
    list_parser = subparsers.add_parser('list', help='List cached scan results')
    list_parser.add_argument(
        '--format', '-F',
        choices=['list', 'json', 'yaml'],
        default='list',
        help='Output format (default: list)'
    )
    list_parser.add_argument(
        '--all', '-a',
        action='store_true',
        dest='show_all',
        help='Include closed ports'
    )

    # collect
    collect_parser = subparsers.add_parser('collect', help='Collect inventory from cached BMCs')
    _add_credential_args(collect_parser)
    collect_parser.add_argument(
        '--host',
        help='Inventory service base URI (no requests sent when empty)'
    )
    collect_parser.add_argument(
        '--output', '-o',
        dest='output_path',
        help='Write all records to one file (format from extension)'
    )
    collect_parser.add_argument(
        '--output-dir',
        help='Write one file per BMC to <dir>/<ID>/<timestamp>.<ext>'
    )
    collect_parser.add_argument(
        '--format', '-F',
        choices=['json', 'yaml'],
        help='Output format (default: from --output extension, else json)'
    )
    collect_parser.add_argument(
        '--force-update',
        action='store_true',
        default=None,
        help='Update the endpoint when adding it fails'
    )
    collect_parser.add_argument(
        '--bmc-id-map', '-m',
        help='BMC ID map as inline JSON or @path (JSON or YAML)'
    )
    collect_parser.add_argument(
        '--id-map-format',
        choices=['json', 'yaml'],
        help='Format of an @path ID map without a known extension'
    )
    collect_parser.add_argument(
        '--cacert',
        dest='ca_cert',
        help='CA bundle used to verify the inventory service'
    )

    # crawl
    crawl_parser = subparsers.add_parser('crawl', help='Crawl a single BMC and print its inventory')
    crawl_parser.add_argument('uri', help='BMC URI (https://172.16.0.101)')
    _add_credential_args(crawl_parser)
    crawl_parser.add_argument(
        '--format', '-F',
        choices=['json', 'yaml'],
        default='json',
        help='Output format (default: json)'
    )

    # cache
    cache_parser = subparsers.add_parser('cache', help='Manage cached scan results')
    cache_subparsers = cache_parser.add_subparsers(dest='cache_command', help='Cache commands')
    remove_parser = cache_subparsers.add_parser('remove', help='Remove hosts from the scan cache')
    remove_parser.add_argument(
        'targets',
        nargs='*',
        help='host, host:port or scheme://host:port (no port removes every port)'
    )
    remove_parser.add_argument(
        '--all', '-a',
        action='store_true',
        dest='remove_all',
        help='Remove every cached result'
    )

    # send
    send_parser = subparsers.add_parser('send', help='Send saved collect output to the inventory service')
    send_parser.add_argument('host', help='Inventory service base URI')
    send_parser.add_argument(
        '--data', '-d',
        action='append',
        help='Records as inline JSON or @path (repeatable; default: standard input)'
    )
    send_parser.add_argument(
        '--format', '-F',
        choices=['json', 'yaml'],
        default='json',
        help='Input format when no file extension says otherwise (default: json)'
    )
    send_parser.add_argument(
        '--force-update', '-f',
        action='store_true',
        help='Update the endpoint when adding it fails'
    )
    send_parser.add_argument(
        '--cacert',
        dest='ca_cert',
        help='CA bundle used to verify the inventory service'
    )

    # secrets
    add_secrets_parser(subparsers)

    return parser


def _add_credential_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--username', '-u', help='BMC username')
    parser.add_argument('--password', '-p', help='BMC password')
    parser.add_argument(
        '--secrets-file',
        help=f'Secret store with BMC credentials (default: {DEFAULT_SECRETS_FILE})'
    )
    parser.add_argument(
        '--insecure', '-i',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Skip TLS verification for BMCs (default: on)'
    )


def config_from_args(args: argparse.Namespace) -> MagellanConfig:
    """Layer CLI flags over defaults, config file and environment."""
    cli: Dict[str, Any] = {
        'concurrency': args.concurrency,
        'timeout': args.timeout,
        'verbose': args.verbose,
        'access_token': args.access_token,
        'cache_path': args.cache_path,
        'secrets_file': getattr(args, 'secrets_file', None),
    }

    if args.command == 'scan':
        cli['scan'] = {
            'hosts': args.hosts,
            'subnets': args.subnets,
            'subnet_masks': args.subnet_masks,
            'ports': args.ports,
            'scheme': args.scheme,
            'disable_probing': args.disable_probing,
            'insecure': args.insecure,
        }
    elif args.command in ('collect', 'crawl'):
        collect = {
            'username': args.username,
            'password': args.password,
            'insecure': args.insecure,
            'format': args.format,
        }
        if args.command == 'collect':
            collect.update({
                'host': args.host,
                'output_path': args.output_path,
                'output_dir': args.output_dir,
                'force_update': args.force_update,
                'bmc_id_map': args.bmc_id_map,
                'id_map_format': args.id_map_format,
                'ca_cert': args.ca_cert,
            })
        cli['collect'] = collect

    return build_config(cli, config_path=args.config_path)


def make_emitter(config: MagellanConfig, args: argparse.Namespace) -> EventEmitter:
    emitter = EventEmitter()
    printer = ConsoleEventPrinter(verbose=config.verbose, color=not args.no_color)
    emitter.subscribe(printer.handle_event)
    return emitter


def print_assets(assets: List[RemoteAsset], fmt: str) -> None:
    """Print scan results as a table, JSON or YAML."""
    data_format = data_format_from_string(fmt, DataFormat.LIST)
    if data_format in (DataFormat.JSON, DataFormat.YAML):
        print(marshal([a.to_dict() for a in assets], data_format))
        return

    if not assets:
        print("No assets found")
        return

    print(f"{'HOST':<40} {'PORT':<6} {'PROTOCOL':<9} {'STATE':<7} TIMESTAMP")
    print("-" * 90)
    for a in assets:
        state = "open" if a.state else "closed"
        print(f"{a.host:<40} {a.port:<6} {a.protocol.value:<9} {state:<7} {a.timestamp.isoformat()}")


# =========================================================================
# Command handlers
# =========================================================================

def handle_scan(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Scan hosts/subnets and store the results in the cache."""
    scan = config.scan
    hosts = build_host_list(scan.hosts, scan.subnets, scan.subnet_masks)
    if not hosts:
        print("Error: no hosts to scan (use --host or --subnet)")
        return 1

    emitter = make_emitter(config, args)
    assets = scan_for_assets(
        hosts,
        ports=list(scan.ports) or None,
        concurrency=config.concurrency,
        timeout=config.timeout,
        check_redfish=not scan.disable_probing,
        scheme=scan.scheme,
        insecure=scan.insecure,
        events=emitter,
    )

    cache = ScanCache(config.cache_path)
    cache.insert_assets(assets)
    logger.info(f"Saved {len(assets)} scan results to {cache.path}")

    print_assets(assets, args.format)
    return 0


def handle_list(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Print cached scan results."""
    assets = ScanCache(config.cache_path).get_assets()
    if not args.show_all:
        assets = [a for a in assets if a.state]
    print_assets(assets, args.format)
    return 0


def _open_store_or_none(secrets_file: str):
    if not Path(secrets_file).exists():
        logger.info(f"No secret store at {secrets_file}, using -u/-p credentials only")
        return None
    try:
        return open_store(secrets_file, create=False)
    except MasterKeyMissing as e:
        logger.warning(f"Secret store not opened ({e}), using -u/-p credentials only")
        return None


def handle_collect(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Crawl every live cached BMC."""
    collect = config.collect
    assets = ScanCache(config.cache_path).get_assets()

    store = _open_store_or_none(config.secrets_file)
    mapper = pick_id_mapper(collect.bmc_id_map, collect.id_map_format)

    params = CollectParams(
        uri=collect.host,
        username=collect.username,
        password=collect.password,
        concurrency=config.concurrency,
        timeout=config.timeout,
        ca_cert=collect.ca_cert,
        verbose=config.verbose,
        output_path=collect.output_path,
        output_dir=collect.output_dir,
        format=collect.format,
        force_update=collect.force_update,
        access_token=config.access_token,
        insecure=collect.insecure,
    )

    try:
        result = collect_inventory(
            assets, params,
            store=store,
            mapper=mapper,
            events=make_emitter(config, args),
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if not collect.output_path and not collect.output_dir and not collect.host:
        print(marshal(result.records, data_format_from_string(collect.format)))

    return 0 if result.failed == 0 or result.collected > 0 else 1


def handle_crawl(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Crawl one BMC and print its systems, managers and BMC summary."""
    collect = config.collect
    crawler_config = CrawlerConfig(
        uri=args.uri,
        credential_store=_open_store_or_none(config.secrets_file),
        insecure=collect.insecure,
        username=collect.username,
        password=collect.password,
        timeout=config.timeout,
    )
    crawler_config = replace(crawler_config, credentials=get_user_pass(crawler_config))

    systems = crawl_bmc_for_systems(crawler_config)
    managers = crawl_bmc_for_managers(crawler_config)

    output = {
        "Systems": [s.to_dict() for s in systems],
        "Managers": [m.to_dict() for m in managers],
        "BMC": [b.to_dict() for b in get_bmc_info(managers)],
    }
    print(marshal(output, data_format_from_string(args.format)))
    return 0


def handle_cache(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Remove cached scan results (cache remove)."""
    if args.cache_command != 'remove':
        print("Error: missing cache command (remove)")
        return 1

    cache = ScanCache(config.cache_path)
    if args.remove_all:
        cache.clear()
        print(f"✓ Removed all cached scan results from {cache.path}")
        return 0

    if not args.targets:
        print("Error: no hosts to remove (give host[:port] or --all)")
        return 1

    assets = []
    for target in args.targets:
        try:
            _, host, port = parse_target(target)
        except ValueError as e:
            print(f"Error: invalid target '{target}': {e}")
            return 1
        if not host:
            print(f"Error: invalid target '{target}'")
            return 1
        # port 0 matches every port on the host
        assets.append(RemoteAsset(host=host, port=port or 0))

    deleted = cache.delete_assets(assets)
    print(f"✓ Removed {deleted} cached scan results")
    return 0


def handle_send(args: argparse.Namespace, config: MagellanConfig) -> int:
    """Send collect output files (or standard input) to the inventory service."""
    sources = args.data
    if not sources:
        if sys.stdin.isatty():
            print("Error: data required with standard input or -d/--data")
            return 1
        sources = [sys.stdin.read()]

    records = []
    try:
        for source in sources:
            records.extend(load_records(source, data_format_from_string(args.format)))
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if not records:
        print("Error: no records to send")
        return 1

    sink = SmdClient(args.host, timeout=config.timeout, ca_cert=args.ca_cert or "")
    sent, failed = send_records(sink, records, build_headers(config.access_token), args.force_update)
    print(f"✓ Sent {sent} of {len(records)} records to {args.host}")
    if failed:
        print(f"Error: {failed} records not sent")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # secrets needs no run configuration
    if args.command == 'secrets':
        setup_logging(bool(args.verbose))
        return handle_secrets(args)

    try:
        config = config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    setup_logging(config.verbose)
    logger.debug(f"Config: {config.to_dict()}")

    handlers = {
        'scan': handle_scan,
        'list': handle_list,
        'collect': handle_collect,
        'crawl': handle_crawl,
        'cache': handle_cache,
        'send': handle_send,
    }

    handler = handlers.get(args.command)
    if not handler:
        parser.print_help()
        return 1

    try:
        return handler(args, config)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except SecretStoreError as e:
        print(f"Error: secret store: {e}")
        return 1
    except MagellanError as e:
        print(f"Error: {e}")
        if config.verbose:
            logger.exception("Command failed")
        return 1


if __name__ == '__main__':
    sys.exit(main())

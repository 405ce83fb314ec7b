"""
Magellan - TCP Liveness Scanner.

Bounded worker-pool liveness check of host:port pairs.

Features:
- N worker threads pull hosts from a queue sized N+1 (pool.run_bounded)
- Ports for one host are tried serially by the same worker
- Results aggregated under a lock (no unsynchronized appends)
- Optional Redfish check: an open port counts only if
  GET /redfish/v1/ answers 200
- Host generation from subnets (CIDR or dotted mask)

Usage:
    hosts = generate_hosts_with_subnet("172.16.0.0", "255.255.255.0")
    assets = scan_for_assets(hosts, [443], concurrency=64, timeout=2, check_redfish=True)
"""

import ipaddress
import logging
import socket
import threading
import time
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests
import urllib3

from .events import EventEmitter
from .models import Protocol, RemoteAsset
from .pool import run_bounded

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 255
DEFAULT_PORTS = (443,)
DEFAULT_SCHEME = "https"
DEFAULT_MASK = "255.255.255.0"


def get_default_ports() -> List[int]:
    return list(DEFAULT_PORTS)


def clamp_concurrency(concurrency: int, work_items: int) -> int:
    """
    Resolve the worker count.

    Non-positive concurrency means "one worker per item", bounded to
    [1, 255]. Explicit positive values are used as given.
    """
    if concurrency <= 0:
        return max(1, min(work_items, MAX_CONCURRENCY))
    return concurrency


# =========================================================================
# Host / URI helpers
# =========================================================================

def parse_target(target: str, default_scheme: str = DEFAULT_SCHEME) -> Tuple[str, str, Optional[int]]:
    """
    Split 'host', 'host:port' or 'scheme://host:port'.

    Returns:
        (scheme, host, port) - port is None when not given.
    """
    if "://" not in target:
        target = f"{default_scheme}://{target}"
    parsed = urlparse(target)
    return parsed.scheme or default_scheme, parsed.hostname or "", parsed.port


def format_hosts(hosts: Iterable[str], ports: Iterable[int], scheme: str = DEFAULT_SCHEME) -> List[str]:
    """Build scheme://host:port URIs for every host/port pair."""
    ports = list(ports)
    uris = []
    for target in hosts:
        target_scheme, host, port = parse_target(target, scheme)
        for p in ([port] if port else ports):
            uri = f"{target_scheme}://{host}:{p}"
            if uri not in uris:
                uris.append(uri)
    return uris


def generate_hosts_with_subnet(subnet: str, subnet_mask: Optional[str] = None) -> List[str]:
    """
    Expand a subnet into host addresses.

    Args:
        subnet: '172.16.0.0/24', or '172.16.0.0' together with subnet_mask.
        subnet_mask: Dotted mask or prefix length; /24 when neither the
            subnet nor the mask specify one.

    Raises:
        ValueError: Unparsable subnet or mask.
    """
    if "/" not in subnet:
        subnet = f"{subnet}/{subnet_mask or DEFAULT_MASK}"
    network = ipaddress.ip_network(subnet, strict=False)
    hosts = [str(ip) for ip in network.hosts()]
    if not hosts:
        hosts = [str(network.network_address)]
    return hosts


def build_host_list(
        hosts: Sequence[str] = (),
        subnets: Sequence[str] = (),
        subnet_masks: Sequence[str] = (),
) -> List[str]:
    """
    Merge explicit hosts and expanded subnets, keeping first-seen order.

    subnet_masks pair with subnets by position; missing masks default to /24.
    """
    result = list(dict.fromkeys(h for h in hosts if h))
    seen = set(result)
    for i, subnet in enumerate(subnets):
        mask = subnet_masks[i] if i < len(subnet_masks) else None
        try:
            expanded = generate_hosts_with_subnet(subnet, mask)
        except ValueError as e:
            logger.error(f"Invalid subnet '{subnet}': {e}")
            continue
        for host in expanded:
            if host not in seen:
                seen.add(host)
                result.append(host)
    return result


# =========================================================================
# Checks
# =========================================================================

def raw_connect(host: str, port: int, timeout: float) -> bool:
    """TCP connect; refused, unreachable and timed out are all False."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug(f"Connect to {host}:{port} failed: {e}")
        return False


def check_redfish_root(
        host: str,
        port: int,
        scheme: str = DEFAULT_SCHEME,
        timeout: float = 5.0,
        insecure: bool = True,
        session: Optional[requests.Session] = None,
) -> bool:
    """True if {scheme}://host:port/redfish/v1/ answers 200."""
    url = f"{scheme}://{host}:{port}/redfish/v1/"
    getter = session or requests
    if insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    try:
        r = getter.get(url, timeout=timeout, verify=not insecure)
    except requests.RequestException as e:
        logger.debug(f"Redfish check {url} failed: {e}")
        return False
    return r.status_code == 200


# =========================================================================
# Scan
# =========================================================================

def scan_for_assets(
        hosts: Sequence[str],
        ports: Optional[Sequence[int]] = None,
        concurrency: int = -1,
        timeout: float = 1.0,
        check_redfish: bool = False,
        keep_open_only: bool = True,
        scheme: str = DEFAULT_SCHEME,
        insecure: bool = True,
        events: Optional[EventEmitter] = None,
        cancel_event: Optional[threading.Event] = None,
) -> List[RemoteAsset]:
    """
    Check every host/port pair with a bounded worker pool.

    Args:
        hosts: Hosts to scan; 'host:port' or URI forms pin the port.
        ports: Ports tried for hosts without one (default [443]).
        concurrency: Worker count; <= 0 clamps to min(len(hosts), 255).
        timeout: Per-connection timeout in seconds.
        check_redfish: Also require a 200 from the Redfish service root.
        keep_open_only: Drop closed ports from the result.
        scheme: Scheme used for the Redfish check.
        insecure: Skip TLS verification for the Redfish check.
        events: Emitter for progress events.
        cancel_event: Set to stop dispatching new hosts.

    Returns:
        RemoteAsset records in completion order.
    """
    if not hosts:
        return []

    ports = list(ports) if ports else get_default_ports()
    workers = clamp_concurrency(concurrency, len(hosts))
    results: List[RemoteAsset] = []
    results_lock = threading.Lock()
    start = time.monotonic()

    if events:
        events.scan_started(len(hosts), ports, workers, timeout)

    def scan_host(target: str) -> None:
        target_scheme, host, pinned = parse_target(target, scheme)
        if not host:
            logger.warning(f"Skipping unparsable host '{target}'")
            return
        for port in ([pinned] if pinned else ports):
            state = raw_connect(host, port, timeout)
            if state and check_redfish:
                state = check_redfish_root(host, port, target_scheme, timeout, insecure)
                if not state:
                    logger.debug(f"{host}:{port} is open but is not a Redfish service")
            if state or not keep_open_only:
                asset = RemoteAsset(host=host, port=port, protocol=Protocol.TCP, state=state)
                with results_lock:
                    results.append(asset)
                if state and events:
                    events.asset_found(host, port)
        if events:
            events.host_checked()

    run_bounded(hosts, workers, scan_host, cancel_event, name="magellan-scan")

    logger.debug(f"Scanned {len(hosts)} hosts with {workers} workers, {len(results)} results")
    if events:
        events.scan_complete(time.monotonic() - start)
    return results

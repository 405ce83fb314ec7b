"""
Magellan - Collection Orchestrator.

Turns scan results into inventory records.

Per live host (one worker from the bounded pool):
    1. Map the host address to a BMC ID (empty ID -> skipped)
    2. Crawl systems, then managers (separate sessions)
    3. Build the RedfishEndpoint record and correlate the BMC MAC
    4. Write the hive file, send to the inventory service

Failures are isolated per host: a crawl error marks that host failed
and the batch continues. Each host is crawled at most once per run even
when the scan found it on several ports.

Usage:
    params = CollectParams(uri="https://smd.example.com", output_dir="./inventory")
    result = collect_inventory(assets, params, store=store)
    print(result.collected, result.failed, result.skipped)
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..creds.store import SecretStore
from ..exceptions import MagellanError
from .crawler import (
    ClientFactory, CrawlerConfig, crawl_bmc_for_managers, crawl_bmc_for_systems,
    find_mac_address_with_ip, get_user_pass,
)
from .events import EventEmitter
from .formats import DataFormat, data_format_from_file_ext, data_format_from_string, file_ext, marshal
from .idmap import GeneratedXnameMapper, Mapper, MapperKeys
from .models import CollectionResult, HostStatus, HostStatusType, InventoryDetail, Manager, RemoteAsset
from .pool import run_bounded
from .redfish import RedfishClient
from .scanner import clamp_concurrency
from .sink import SinkError, SmdClient, build_headers

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass
class CollectParams:
    """
    Options for a collect run.

    uri is the inventory service base URI; no requests are sent when it
    is empty. output_path and output_dir may both be set.
    """
    uri: str = ""
    username: str = ""
    password: str = ""
    concurrency: int = -1
    timeout: float = 30
    ca_cert: str = ""
    verbose: bool = False
    output_path: str = ""
    output_dir: str = ""
    format: str = ""
    force_update: bool = False
    access_token: str = ""
    insecure: bool = True
    use_default: bool = True
    scheme: str = "https"


def resolve_format(params: CollectParams) -> DataFormat:
    """
    Output format: explicit --format, else the output file extension,
    else JSON.
    """
    if params.format:
        fmt = data_format_from_string(params.format)
    elif params.output_path:
        fmt = data_format_from_file_ext(params.output_path, DataFormat.JSON)
    else:
        fmt = DataFormat.JSON
    if fmt not in (DataFormat.JSON, DataFormat.YAML):
        raise ValueError(f"collect output must be json or yaml, not '{fmt.value}'")
    return fmt


def build_record(
        bmc_id: str,
        host: str,
        username: str,
        systems: List[InventoryDetail],
        managers: List[Manager],
        mac: str = "",
) -> Dict[str, Any]:
    """RedfishEndpoint record as accepted by the inventory service."""
    record: Dict[str, Any] = {
        "ID": bmc_id,
        "Type": "",
        "Name": "",
        "FQDN": host,
        "User": username,
        "MACRequired": True,
        "RediscoverOnUpdate": False,
        "Systems": [s.to_dict() for s in systems],
        "Managers": [m.to_dict() for m in managers],
        "SchemaVersion": SCHEMA_VERSION,
    }
    if mac:
        record["MACAddr"] = mac
    return record


def write_hive(output_dir: str, record: Dict[str, Any], fmt: DataFormat) -> Path:
    """Write one record to {output_dir}/{ID}/{unix_ts}.{ext}."""
    path = Path(output_dir) / record["ID"] / f"{int(time.time())}.{file_ext(fmt)}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(marshal(record, fmt), encoding="utf-8")
    return path


def write_output(output_path: str, records: List[Dict[str, Any]], fmt: DataFormat) -> Path:
    """Write every record as one list to output_path."""
    path = Path(output_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(marshal(records, fmt), encoding="utf-8")
    return path


def collect_inventory(
        assets: List[RemoteAsset],
        params: CollectParams,
        store: Optional[SecretStore] = None,
        mapper: Optional[Mapper] = None,
        events: Optional[EventEmitter] = None,
        cancel_event: Optional[threading.Event] = None,
        client_factory: ClientFactory = RedfishClient,
        sink: Optional[SmdClient] = None,
) -> CollectionResult:
    """
    Crawl every live asset and build inventory records.

    Args:
        assets: Scan results; only state=True assets are collected.
        params: Collect options.
        store: Secret store for per-BMC and default credentials.
        mapper: BMC ID mapper (generated XNAME when None).
        events: Emitter for progress events.
        cancel_event: Set to stop dispatching new hosts.
        client_factory: Builds the Redfish client for each crawl.
        sink: Inventory service client; built from params.uri when None.

    Returns:
        CollectionResult with records and a status per host.

    Raises:
        ValueError: Unsupported output format.
    """
    fmt = resolve_format(params)
    result = CollectionResult()

    live = [a for a in assets if a.state]
    if not live:
        logger.warning("No live assets to collect from (run a scan first?)")
        result.finished_at = datetime.now()
        return result

    mapper = mapper or GeneratedXnameMapper().initialize()
    if sink is None and params.uri:
        sink = SmdClient(params.uri, timeout=params.timeout, ca_cert=params.ca_cert)
    headers = build_headers(params.access_token)

    workers = clamp_concurrency(params.concurrency, len(live))
    lock = threading.Lock()
    found = set()
    start = time.monotonic()

    if events:
        events.collect_started(len(live), workers)

    def record_status(asset: RemoteAsset, status: HostStatusType, reason: str = "", bmc_id: str = "") -> None:
        with lock:
            result.statuses.append(HostStatus(asset.host, asset.port, status, reason, bmc_id))

    def collect_host(asset: RemoteAsset) -> None:
        with lock:
            claimed = asset.host not in found
            found.add(asset.host)
        if not claimed:
            record_status(asset, HostStatusType.SKIPPED, "already collected")
            return

        target = asset.address
        if events:
            events.host_started(target)

        bmc_id = mapper.get_mapped_id(MapperKeys(ipv4_addr=asset.host))
        if not bmc_id:
            reason = "no BMC ID mapped"
            logger.info(f"Skipping {target}: {reason}")
            record_status(asset, HostStatusType.SKIPPED, reason)
            if events:
                events.host_skipped(target, reason)
            return

        config = CrawlerConfig(
            uri=f"{params.scheme}://{asset.host}:{asset.port}",
            credential_store=store,
            insecure=params.insecure,
            use_default=params.use_default,
            username=params.username,
            password=params.password,
            timeout=params.timeout,
        )
        try:
            creds = get_user_pass(config)
            config = replace(config, credentials=creds)
            systems = crawl_bmc_for_systems(config, client_factory)
            managers = crawl_bmc_for_managers(config, client_factory)
        except MagellanError as e:
            logger.error(f"Failed to crawl BMC {target}: {e}")
            record_status(asset, HostStatusType.FAILED, str(e), bmc_id)
            if events:
                events.host_failed(target, str(e))
            return
        except Exception as e:
            # Malformed vendor data that slipped past the typed errors
            logger.exception(f"Unexpected error crawling BMC {target}")
            reason = f"unexpected error: {e!r}"
            record_status(asset, HostStatusType.FAILED, reason, bmc_id)
            if events:
                events.host_failed(target, reason)
            return

        if not systems and not managers:
            reason = "no systems or managers found"
            logger.warning(f"Skipping {target}: {reason}")
            record_status(asset, HostStatusType.SKIPPED, reason, bmc_id)
            if events:
                events.host_skipped(target, reason)
            return

        mac = find_mac_address_with_ip(managers, asset.host)
        if not mac:
            logger.debug(f"No manager interface on {target} carries {asset.host}")

        record = build_record(bmc_id, asset.host, creds.username, systems, managers, mac)
        with lock:
            result.records.append(record)

        if params.verbose:
            logger.debug(marshal(record, fmt))

        if params.output_dir:
            try:
                path = write_hive(params.output_dir, record, fmt)
                logger.debug(f"Wrote {path}")
            except OSError as e:
                logger.error(f"Failed to write collect output for {bmc_id}: {e}")

        reason = ""
        if sink is not None:
            try:
                sink.add_or_update(bmc_id, marshal(record, DataFormat.JSON), headers, params.force_update)
            except SinkError as e:
                verb = "update" if params.force_update else "add"
                logger.error(f"Failed to {verb} Redfish endpoint {bmc_id}: {e}")
                reason = f"sink: {e}"
        elif params.verbose:
            logger.warning("No request made (inventory service URI is empty)")

        record_status(asset, HostStatusType.COLLECTED, reason, bmc_id)
        if events:
            events.host_collected(target, bmc_id, len(systems), len(managers))

    run_bounded(live, workers, collect_host, cancel_event, name="magellan-collect")

    if params.output_path:
        try:
            path = write_output(params.output_path, result.records, fmt)
            logger.info(f"Wrote {len(result.records)} records to {path}")
        except OSError as e:
            logger.error(f"Failed to write collect output to {params.output_path}: {e}")

    result.finished_at = datetime.now()
    if events:
        events.collect_complete(time.monotonic() - start)
    logger.debug(
        f"Collected {result.collected}, skipped {result.skipped}, "
        f"failed {result.failed} in {result.duration_seconds:.1f}s"
    )
    return result

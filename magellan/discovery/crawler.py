"""
Magellan - BMC Crawler.

Walks a BMC's Redfish object graph and normalizes it into InventoryDetail
and Manager records.

Crawl order per host:
    1. Resolve credentials (explicit > URI secret > default secret > blank)
    2. Connect: service root check + session login
    3. /Chassis -> Links.ComputerSystems (some firmware only exposes
       systems here), chassis attributes copied onto each system
    4. /Systems for anything not already found under a chassis
    5. EthernetInterfaces per system: MAC + first IPv4
    6. Logout, on every exit path

A failure that makes the host meaningless (404 service root, 401,
transport error) raises and aborts this host only. A failed walk of one
sub-resource (a single interface collection) is logged and skipped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..creds.models import BMCCredentials
from ..creds.resolver import get_bmc_credentials
from ..creds.store import SecretStore
from .models import BMCInfo, EthernetInterface, InventoryDetail, Manager
from .redfish import RESOURCE_ERRORS, RedfishClient, member_links

logger = logging.getLogger(__name__)

# Manager types that identify the BMC itself
BMC_MANAGER_TYPES = {"BMC", "ManagementController"}

ClientFactory = Callable[..., RedfishClient]


@dataclass(frozen=True)
class CrawlerConfig:
    """
    Parameters for one crawl.

    credential_store is shared across crawls and never closed here.
    username/password, when given, take precedence over the store.
    credentials, when set, were already resolved and skip the lookup.
    """
    uri: str
    credential_store: Optional[SecretStore] = None
    insecure: bool = True
    use_default: bool = True
    username: str = ""
    password: str = ""
    timeout: float = 30
    credentials: Optional[BMCCredentials] = None


def get_user_pass(config: CrawlerConfig) -> BMCCredentials:
    """Resolve the credentials for config.uri."""
    if config.credentials is not None:
        return config.credentials
    return get_bmc_credentials(
        config.credential_store,
        config.uri,
        username=config.username,
        password=config.password,
        use_default=config.use_default,
    )


def _open_client(config: CrawlerConfig, client_factory: ClientFactory) -> RedfishClient:
    creds = get_user_pass(config)
    return client_factory(
        config.uri,
        username=creds.username,
        password=creds.password,
        insecure=config.insecure,
        timeout=config.timeout,
    )


# =========================================================================
# Public crawl entry points
# =========================================================================

def crawl_bmc_for_systems(
        config: CrawlerConfig,
        client_factory: ClientFactory = RedfishClient,
) -> List[InventoryDetail]:
    """
    Crawl one BMC for its compute systems.

    Raises:
        NotABMCError, AuthenticationFailed, RedfishTransportError,
        RedfishParseError (service root only)
    """
    client = _open_client(config, client_factory)
    try:
        client.connect()
        return walk_systems(client)
    finally:
        client.close()


def crawl_bmc_for_managers(
        config: CrawlerConfig,
        client_factory: ClientFactory = RedfishClient,
) -> List[Manager]:
    """
    Crawl one BMC for its managers.

    Raises:
        NotABMCError, AuthenticationFailed, RedfishTransportError,
        RedfishParseError (service root only)
    """
    client = _open_client(config, client_factory)
    try:
        client.connect()
        return walk_managers(client)
    finally:
        client.close()


# =========================================================================
# Graph walk
# =========================================================================

def _collection_path(client: RedfishClient, name: str) -> str:
    return client.link_path(client.service_root, name) or f"/redfish/v1/{name}"


def _safe_members(client: RedfishClient, path: str) -> List[Dict[str, Any]]:
    """Members of a collection; an unreadable collection yields an empty list."""
    try:
        return client.get_members(path)
    except RESOURCE_ERRORS as e:
        logger.warning(f"Could not read {path} on {client.base_url}: {e}")
        return []


def _link_id(link: Any) -> str:
    if isinstance(link, dict):
        return link.get("@odata.id") or ""
    return ""


def _links(resource: Dict[str, Any], name: str) -> List[Any]:
    """resource.Links[name] as a list; null or malformed yields []."""
    links = resource.get("Links")
    if not isinstance(links, dict):
        return []
    entries = links.get(name)
    return entries if isinstance(entries, list) else []


def _member_paths(client: RedfishClient, path: str) -> List[str]:
    """Member @odata.id links of a collection; an unreadable collection yields []."""
    try:
        collection = client.get(path)
    except RESOURCE_ERRORS as e:
        logger.warning(f"Could not read {path} on {client.base_url}: {e}")
        return []
    return [p for p in (_link_id(link) for link in member_links(collection)) if p]


def _read_system(client: RedfishClient, path: str) -> Optional[Dict[str, Any]]:
    try:
        return client.get(path)
    except RESOURCE_ERRORS as e:
        logger.warning(f"Skipping system {path} on {client.base_url}: {e}")
        return None


def walk_systems(client: RedfishClient) -> List[InventoryDetail]:
    """
    Merge systems found under /Chassis with the top-level /Systems set.

    Systems are keyed by @odata.id; a system seen under a chassis is not
    re-read from /Systems.
    """
    systems: Dict[str, InventoryDetail] = {}

    chassis_list = _safe_members(client, _collection_path(client, "Chassis"))
    chassis_by_path = {_link_id(c): c for c in chassis_list if _link_id(c)}

    for chassis in chassis_list:
        for link in _links(chassis, "ComputerSystems"):
            path = _link_id(link)
            if not path or path in systems:
                continue
            resource = _read_system(client, path)
            if resource is None:
                continue
            detail = build_system(client, resource)
            detail.apply_chassis(chassis)
            systems[path] = detail

    for path in _member_paths(client, _collection_path(client, "Systems")):
        if path in systems:
            continue
        resource = _read_system(client, path)
        if resource is None:
            continue
        detail = build_system(client, resource)
        for link in _links(resource, "Chassis"):
            chassis = chassis_by_path.get(_link_id(link))
            if chassis:
                detail.apply_chassis(chassis)
                break
        systems[path] = detail

    return list(systems.values())


def build_system(client: RedfishClient, system: Dict[str, Any]) -> InventoryDetail:
    """Normalize one ComputerSystem resource."""
    processors = system.get("ProcessorSummary") or {}
    memory = system.get("MemorySummary") or {}

    detail = InventoryDetail(
        uri=client.base_url + (system.get("@odata.id") or ""),
        uuid=system.get("UUID") or "",
        manufacturer=system.get("Manufacturer") or "",
        system_type=system.get("SystemType") or "",
        name=system.get("Name") or "",
        model=system.get("Model") or "",
        serial=system.get("SerialNumber") or "",
        bios_version=system.get("BiosVersion") or "",
        power_state=system.get("PowerState") or "",
        processor_count=int(processors.get("Count") or 0),
        processor_type=processors.get("Model") or "",
        memory_total=float(memory.get("TotalSystemMemoryGiB") or 0.0),
        trusted_modules=[
            tm.get("InterfaceType") or ""
            for tm in system.get("TrustedModules") or []
            if isinstance(tm, dict) and tm.get("InterfaceType")
        ],
    )
    detail.ethernet_interfaces = walk_ethernet_interfaces(client, system)
    return detail


def walk_managers(client: RedfishClient) -> List[Manager]:
    """Normalize every Manager resource."""
    managers = []
    for resource in _safe_members(client, _collection_path(client, "Managers")):
        managers.append(Manager(
            uri=client.base_url + (resource.get("@odata.id") or ""),
            uuid=resource.get("UUID") or "",
            name=resource.get("Name") or "",
            description=resource.get("Description") or "",
            model=resource.get("Model") or "",
            manufacturer=resource.get("Manufacturer") or "",
            serial_number=resource.get("SerialNumber") or "",
            manager_type=resource.get("ManagerType") or "",
            firmware_version=resource.get("FirmwareVersion") or "",
            ethernet_interfaces=walk_ethernet_interfaces(client, resource),
        ))
    return managers


def walk_ethernet_interfaces(client: RedfishClient, resource: Dict[str, Any]) -> List[EthernetInterface]:
    """EthernetInterfaces of a system or manager; missing collection yields []."""
    path = client.link_path(resource, "EthernetInterfaces")
    if not path:
        return []
    return [build_interface(client, eth) for eth in _safe_members(client, path)]


def _addresses(entries: Any) -> List[str]:
    return [
        e.get("Address")
        for e in entries or []
        if isinstance(e, dict) and e.get("Address")
    ]


def build_interface(client: RedfishClient, eth: Dict[str, Any]) -> EthernetInterface:
    """Normalize one EthernetInterface; IPv4 addresses dynamic first, then static."""
    addresses = _addresses(eth.get("IPv4Addresses"))
    for address in _addresses(eth.get("IPv4StaticAddresses")):
        if address not in addresses:
            addresses.append(address)
    return EthernetInterface(
        uri=client.base_url + (eth.get("@odata.id") or ""),
        mac=eth.get("MACAddress") or eth.get("PermanentMACAddress") or "",
        ip=addresses[0] if addresses else "",
        name=eth.get("Name") or "",
        description=eth.get("Description") or "",
        enabled=eth.get("InterfaceEnabled"),
        ipv4_addresses=addresses,
    )


# =========================================================================
# Manager helpers
# =========================================================================

def find_mac_address_with_ip(managers: List[Manager], target_ip: str) -> str:
    """
    MAC of the manager interface that carries target_ip.

    Returns:
        The MAC address, or "" when nothing matches.
    """
    for manager in managers:
        for eth in manager.ethernet_interfaces:
            if target_ip in eth.ipv4_addresses and eth.mac:
                return eth.mac
    return ""


def is_bmc(manager: Optional[Manager]) -> bool:
    """True for managers whose type identifies the BMC itself."""
    return manager is not None and manager.manager_type in BMC_MANAGER_TYPES


def get_bmc_info(managers: List[Manager]) -> List[BMCInfo]:
    """Summaries of the BMC-type managers."""
    return [
        BMCInfo(
            manufacturer=m.manufacturer,
            model=m.model,
            serial_number=m.serial_number,
            firmware_version=m.firmware_version,
            manager_type=m.manager_type,
            uuid=m.uuid,
        )
        for m in managers
        if is_bmc(m)
    ]

"""
Magellan - Discovery Engine.

Scan, crawl and collect BMC inventory over Redfish.

Components:
- scanner: bounded worker-pool TCP/Redfish liveness scan
- redfish: Redfish HTTP client (service root check, session login)
- crawler: systems/managers graph walk into InventoryDetail/Manager
- idmap: BMC address -> BMC ID (generated XNAME or user table)
- collector: per-host crawl, record build, file output, sink upload
- sink: inventory service (SMD) RedfishEndpoints client
- cache: sqlite scan result cache
- events: progress events for console/GUI consumers

Quick Start:
    from magellan.discovery import (
        scan_for_assets, generate_hosts_with_subnet,
        collect_inventory, CollectParams,
    )

    hosts = generate_hosts_with_subnet("172.16.0.0/24")
    assets = scan_for_assets(hosts, [443], concurrency=64, check_redfish=True)
    result = collect_inventory(assets, CollectParams(output_dir="./inventory"))
"""

# Models
from .models import (
    Protocol,
    HostStatusType,
    RemoteAsset,
    EthernetInterface,
    InventoryDetail,
    Manager,
    BMCInfo,
    HostStatus,
    CollectionResult,
)

# Scanner
from .scanner import (
    scan_for_assets,
    generate_hosts_with_subnet,
    build_host_list,
    format_hosts,
    clamp_concurrency,
    get_default_ports,
)

# Redfish / crawler
from .redfish import (
    RedfishClient,
    CrawlError,
    NotABMCError,
    AuthenticationFailed,
    RedfishParseError,
    RedfishTransportError,
    RedfishHTTPError,
)
from .crawler import (
    CrawlerConfig,
    crawl_bmc_for_systems,
    crawl_bmc_for_managers,
    find_mac_address_with_ip,
    get_bmc_info,
    is_bmc,
)

# ID mapping
from .idmap import (
    Mapper,
    MapperKeys,
    GeneratedXnameMapper,
    UserProvidedMapper,
    IdMapError,
    pick_id_mapper,
)

# Collection
from .collector import (
    CollectParams,
    collect_inventory,
)
from .sink import SmdClient, SinkError
from .cache import ScanCache, CacheError

# Events
from .events import (
    EventEmitter,
    EventType,
    DiscoveryEvent,
    DiscoveryStats,
    ConsoleEventPrinter,
)

# Formats
from .formats import DataFormat

__all__ = [
    # Models
    "Protocol",
    "HostStatusType",
    "RemoteAsset",
    "EthernetInterface",
    "InventoryDetail",
    "Manager",
    "BMCInfo",
    "HostStatus",
    "CollectionResult",

    # Scanner
    "scan_for_assets",
    "generate_hosts_with_subnet",
    "build_host_list",
    "format_hosts",
    "clamp_concurrency",
    "get_default_ports",

    # Crawler
    "RedfishClient",
    "CrawlerConfig",
    "crawl_bmc_for_systems",
    "crawl_bmc_for_managers",
    "find_mac_address_with_ip",
    "get_bmc_info",
    "is_bmc",

    # Exceptions
    "CrawlError",
    "NotABMCError",
    "AuthenticationFailed",
    "RedfishParseError",
    "RedfishTransportError",
    "RedfishHTTPError",
    "IdMapError",
    "SinkError",
    "CacheError",

    # ID mapping
    "Mapper",
    "MapperKeys",
    "GeneratedXnameMapper",
    "UserProvidedMapper",
    "pick_id_mapper",

    # Collection
    "CollectParams",
    "collect_inventory",
    "SmdClient",
    "ScanCache",

    # Events
    "EventEmitter",
    "EventType",
    "DiscoveryEvent",
    "DiscoveryStats",
    "ConsoleEventPrinter",

    # Formats
    "DataFormat",
]

"""
Magellan - Discovery Data Models.

Dataclasses for scan results, crawled Redfish inventory and collection
output. Field names of the inventory models match the JSON keys sent to
the inventory service.

Design Principles:
- Scan results (RemoteAsset) are frozen once created
- Inventory fields default to empty and are omitted from JSON when empty
- Chassis attributes are copied onto each system, not referenced
- Serializable to JSON/YAML via to_dict()
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class Protocol(str, Enum):
    """Transport used by the scanner."""
    TCP = "tcp"


class HostStatusType(str, Enum):
    """Outcome of collecting one host."""
    COLLECTED = "collected"
    SKIPPED = "skipped"
    FAILED = "failed"


def _prune(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty values (omitempty)."""
    return {k: v for k, v in data.items() if v not in (None, "", 0, 0.0, [], {})}


# =========================================================================
# Scan
# =========================================================================

@dataclass(frozen=True)
class RemoteAsset:
    """
    One host:port checked by the scanner.

    state is True when the TCP connection succeeded within the timeout
    (and the Redfish service root answered, when checked).
    """
    host: str
    port: int
    protocol: Protocol = Protocol.TCP
    state: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol.value,
            "state": self.state,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RemoteAsset':
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            host=data["host"],
            port=int(data["port"]),
            protocol=Protocol(data.get("protocol") or "tcp"),
            state=bool(data.get("state", False)),
            timestamp=timestamp or datetime.now(),
        )


# =========================================================================
# Redfish inventory
# =========================================================================

@dataclass
class EthernetInterface:
    """Redfish EthernetInterface (system NIC or manager port)."""
    uri: str = ""
    mac: str = ""
    ip: str = ""                 # first IPv4 address (dynamic, then static)
    name: str = ""
    description: str = ""
    enabled: Optional[bool] = None
    ipv4_addresses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = _prune(asdict(self))
        if self.enabled is not None:
            d["enabled"] = self.enabled
        return d


@dataclass
class InventoryDetail:
    """
    One ComputerSystem under a BMC.

    Every system field comes from the same ComputerSystem resource.
    chassis_* fields are copied from the parent chassis.
    """
    uri: str = ""
    uuid: str = ""
    manufacturer: str = ""
    system_type: str = ""
    name: str = ""
    model: str = ""
    serial: str = ""
    bios_version: str = ""
    ethernet_interfaces: List[EthernetInterface] = field(default_factory=list)
    power_state: str = ""
    processor_count: int = 0
    processor_type: str = ""
    memory_total: float = 0.0    # GiB
    trusted_modules: List[str] = field(default_factory=list)

    # Parent chassis (denormalized)
    chassis_sku: str = ""
    chassis_serial_number: str = ""
    chassis_asset_tag: str = ""
    chassis_manufacturer: str = ""
    chassis_model: str = ""

    def apply_chassis(self, chassis: Dict[str, Any]) -> None:
        """Copy chassis attributes from a Redfish Chassis resource."""
        self.chassis_sku = chassis.get("SKU") or ""
        self.chassis_serial_number = chassis.get("SerialNumber") or ""
        self.chassis_asset_tag = chassis.get("AssetTag") or ""
        self.chassis_manufacturer = chassis.get("Manufacturer") or ""
        self.chassis_model = chassis.get("Model") or ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["ethernet_interfaces"] = [e.to_dict() for e in self.ethernet_interfaces]
        return _prune(d)


@dataclass
class Manager:
    """Redfish Manager resource (the BMC itself)."""
    uri: str = ""
    uuid: str = ""
    name: str = ""
    description: str = ""
    model: str = ""
    manufacturer: str = ""
    serial_number: str = ""
    manager_type: str = ""
    firmware_version: str = ""
    ethernet_interfaces: List[EthernetInterface] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["ethernet_interfaces"] = [e.to_dict() for e in self.ethernet_interfaces]
        return _prune(d)


@dataclass
class BMCInfo:
    """Summary of a manager identified as a BMC."""
    manufacturer: str = ""
    model: str = ""
    serial_number: str = ""
    firmware_version: str = ""
    manager_type: str = ""
    uuid: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =========================================================================
# Collection
# =========================================================================

@dataclass
class HostStatus:
    """Per-host outcome, reported alongside the records."""
    host: str
    port: int
    status: HostStatusType
    reason: str = ""
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class CollectionResult:
    """
    Result of a collect run.

    records holds the inventory records; hosts that failed or were
    skipped are absent from records and listed in statuses.
    """
    records: List[Dict[str, Any]] = field(default_factory=list)
    statuses: List[HostStatus] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def _count(self, status: HostStatusType) -> int:
        return sum(1 for s in self.statuses if s.status == status)

    @property
    def collected(self) -> int:
        return self._count(HostStatusType.COLLECTED)

    @property
    def failed(self) -> int:
        return self._count(HostStatusType.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(HostStatusType.SKIPPED)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": self.records,
            "statuses": [s.to_dict() for s in self.statuses],
            "collected": self.collected,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": self.duration_seconds,
        }

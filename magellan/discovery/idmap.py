"""
Magellan - BMC ID Mapping.

Maps a BMC's network address to the stable identifier used by the
inventory service. Two interchangeable mappers:

- GeneratedXnameMapper: decomposes the 32-bit IPv4 address into XNAME
  fields. Stateless; an unparsable address maps to "".
- UserProvidedMapper: table supplied inline (JSON) or as @path (JSON or
  YAML by extension). Unmapped addresses log a warning and map to "".

An empty ID means "skip this BMC", never an error.

ID map file:
    map_key: bmc-ip-addr
    id_map:
      172.16.0.101: x3000c0s1b0
      172.16.0.102: x3000c0s2b0
"""

import ipaddress
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from ..exceptions import ConfigError
from .formats import DataFormat, data_format_from_file_ext, unmarshal

logger = logging.getLogger(__name__)

MAP_KEY_BMC_IP_ADDR = "bmc-ip-addr"
VALID_MAP_KEYS = {MAP_KEY_BMC_IP_ADDR}

# An XNAME can address 10,000 cabinets. Mapping into 8K cabinets leaves
# 8 chassis per cabinet, 256 shelves per chassis and 256 BMCs per shelf,
# which consumes the whole 32-bit IPv4 space.
CABINET_SHIFT = 19
CABINET_MASK = 0x1FFF
CHASSIS_SHIFT = 16
CHASSIS_MASK = 0x7
SHELF_SHIFT = 24
SHELF_MASK = 0xFF
BMC_SHIFT = 0
BMC_MASK = 0xFF


class IdMapError(ConfigError):
    """Invalid or unreadable BMC ID map."""
    pass


@dataclass(frozen=True)
class MapperKeys:
    """Lookup keys for a BMC. Only the IPv4 address today."""
    ipv4_addr: str


class Mapper(ABC):
    """Capability interface for BMC ID mappers."""

    @abstractmethod
    def initialize(self) -> 'Mapper':
        """Prepare the mapper. Raises IdMapError on bad configuration."""

    @abstractmethod
    def get_mapped_id(self, keys: MapperKeys) -> str:
        """Return the BMC ID, or "" to skip the BMC."""


# =========================================================================
# Generated XNAME mapper
# =========================================================================

def ip_addr_str_to_int(ip: str) -> int:
    """
    Parse a dotted IPv4 address.

    Raises:
        ValueError: Not an IPv4 address.
    """
    return int(ipaddress.IPv4Address(ip.strip()))


def ip_addr_int_to_xname(ip_int: int) -> str:
    """Render the NodeBMC XNAME x<cabinet>c<chassis>s<shelf>b<bmc>."""
    cabinet = (ip_int >> CABINET_SHIFT) & CABINET_MASK
    chassis = (ip_int >> CHASSIS_SHIFT) & CHASSIS_MASK
    shelf = (ip_int >> SHELF_SHIFT) & SHELF_MASK
    bmc = (ip_int >> BMC_SHIFT) & BMC_MASK
    return f"x{cabinet}c{chassis}s{shelf}b{bmc}"


class GeneratedXnameMapper(Mapper):
    """Purely computational mapper; no state."""

    def initialize(self) -> 'GeneratedXnameMapper':
        return self

    def get_mapped_id(self, keys: MapperKeys) -> str:
        try:
            ip_int = ip_addr_str_to_int(keys.ipv4_addr)
        except (ValueError, AttributeError) as e:
            logger.error(f"Failed to generate XNAME from IP address '{keys.ipv4_addr}': {e}")
            return ""
        return ip_addr_int_to_xname(ip_int)


# =========================================================================
# User provided mapper
# =========================================================================

@dataclass
class BMCIdMap:
    """Host address -> BMC ID table."""
    id_map: Dict[str, str] = field(default_factory=dict)
    map_key: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'BMCIdMap':
        if not isinstance(data, dict):
            raise IdMapError("BMC ID map must be a mapping with 'id_map' and 'map_key'")
        id_map = data.get("id_map") or {}
        if not isinstance(id_map, dict):
            raise IdMapError("'id_map' in BMC ID map must be a mapping")
        return cls(
            id_map={str(k): str(v) for k, v in id_map.items()},
            map_key=str(data.get("map_key") or ""),
        )


def load_bmc_id_map(data: str, fmt: str = "") -> Optional[BMCIdMap]:
    """
    Load a BMC ID map from an inline JSON string or an @path file.

    Args:
        data: JSON text, or '@' followed by a file path.
        fmt: Format used when the file extension is not recognised.

    Returns:
        The map, or None when data is empty.

    Raises:
        IdMapError: Unreadable file or malformed content.
    """
    if not data:
        return None

    if not data.startswith("@"):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise IdMapError(f"failed to decode BMC ID map: {e}") from e
        return BMCIdMap.from_dict(parsed)

    path = Path(data[1:])
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise IdMapError(f"error reading BMC ID mapping file '{path}': {e}") from e

    file_fmt = data_format_from_file_ext(path, fmt or DataFormat.JSON)
    try:
        parsed = unmarshal(text, file_fmt)
    except ValueError as e:
        raise IdMapError(f"failed to decode BMC ID mapping file '{path}': {e}") from e
    return BMCIdMap.from_dict(parsed)


class UserProvidedMapper(Mapper):
    """
    Mapper backed by a user supplied table.

    Usage:
        mapper = UserProvidedMapper("@idmap.yaml").initialize()
        mapper.get_mapped_id(MapperKeys("172.16.0.101"))
    """

    def __init__(self, id_map_str: str, id_map_format: str = ""):
        self.id_map_str = id_map_str
        self.id_map_format = id_map_format
        self.id_map: Optional[BMCIdMap] = None

    def initialize(self) -> 'UserProvidedMapper':
        id_map = load_bmc_id_map(self.id_map_str, self.id_map_format)
        if id_map is None:
            id_map = BMCIdMap()
        if id_map.map_key not in VALID_MAP_KEYS:
            raise IdMapError(
                f"invalid 'map_key' field '{id_map.map_key}' in BMC ID Map; "
                f"a valid value is '{MAP_KEY_BMC_IP_ADDR}'"
            )
        self.id_map = id_map
        return self

    def get_mapped_id(self, keys: MapperKeys) -> str:
        if self.id_map is None:
            logger.error(f"BMC ID map is missing, skipping BMC {keys.ipv4_addr}")
            return ""

        selector = keys.ipv4_addr
        bmc_id = self.id_map.id_map.get(selector, "")
        if not bmc_id:
            logger.warning(f"no mapping found from host selector '{selector}' to a BMC ID")
            return ""
        return bmc_id


def pick_id_mapper(bmc_id_map: Optional[str], id_map_format: str = "") -> Mapper:
    """
    Select and initialize the mapper.

    Any supplied map wins over the generated XNAME mapper, even an
    empty string or one whose id_map table is empty. None means no map
    was configured.

    Raises:
        IdMapError: The user map is invalid.
    """
    if bmc_id_map is not None:
        logger.debug("Using user provided BMC ID mapper")
        mapper: Mapper = UserProvidedMapper(bmc_id_map, id_map_format)
    else:
        logger.debug("Using generated XNAME BMC ID mapper")
        mapper = GeneratedXnameMapper()
    return mapper.initialize()

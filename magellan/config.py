"""
Magellan - Run Configuration.

Builds one immutable MagellanConfig per invocation. Sources are layered,
later ones winning:

    built-in defaults < YAML config file < environment < CLI flags

Nothing in the package reads module-level mutable settings; every entry
point receives the config (or the pieces it needs) explicitly.

Environment Variables:
    MAGELLAN_CONFIG        Path to YAML config file
    MAGELLAN_CACHE         Path to scan cache database
    MAGELLAN_ACCESS_TOKEN  Bearer token for the inventory service
    MASTER_KEY             Hex master key for the secret store (read by creds.store)

Example config.yaml:
    concurrency: 64
    timeout: 10
    cache: /var/tmp/magellan.db
    scan:
      subnets: [172.16.0.0/24]
      ports: [443]
    collect:
      host: https://smd.example.com
      output_dir: ./inventory
      bmc_id_map: "@idmap.yaml"
"""

import getpass
import logging
import os
import tempfile
from dataclasses import dataclass, field, asdict, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_CONFIG = "MAGELLAN_CONFIG"
ENV_CACHE = "MAGELLAN_CACHE"
ENV_ACCESS_TOKEN = "MAGELLAN_ACCESS_TOKEN"

DEFAULT_SECRETS_FILE = "nodes.json"


def default_cache_path() -> str:
    """Per-user scan cache location: /tmp/<user>/magellan/magellan.db"""
    try:
        user = getpass.getuser()
    except Exception:
        user = "default"
    return str(Path(tempfile.gettempdir()) / user / "magellan" / "magellan.db")


# =========================================================================
# Config sections
# =========================================================================

@dataclass(frozen=True)
class ScanSettings:
    """Settings for the scan subcommand."""
    hosts: Tuple[str, ...] = ()
    subnets: Tuple[str, ...] = ()
    subnet_masks: Tuple[str, ...] = ()
    ports: Tuple[int, ...] = ()
    scheme: str = "https"
    disable_probing: bool = False
    insecure: bool = True


@dataclass(frozen=True)
class CollectSettings:
    """Settings for the collect and crawl subcommands."""
    username: str = ""
    password: str = ""
    host: str = ""                   # inventory service base URI
    output_path: str = ""            # single flat file
    output_dir: str = ""             # per-ID hive directory
    format: str = ""                 # json | yaml (inferred when empty)
    force_update: bool = False
    bmc_id_map: Optional[str] = None  # inline JSON or @path; None = not configured
    id_map_format: str = ""
    insecure: bool = True
    ca_cert: str = ""


@dataclass(frozen=True)
class MagellanConfig:
    """
    Immutable configuration for a single magellan invocation.

    Built once by build_config() and threaded through the scanner,
    collector and CLI handlers.
    """
    concurrency: int = -1
    timeout: int = 30
    cache_path: str = field(default_factory=default_cache_path)
    verbose: bool = False
    access_token: str = ""
    secrets_file: str = DEFAULT_SECRETS_FILE
    config_path: str = ""
    scan: ScanSettings = field(default_factory=ScanSettings)
    collect: CollectSettings = field(default_factory=CollectSettings)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (access token masked)."""
        data = asdict(self)
        if data.get("access_token"):
            data["access_token"] = "***"
        if data["collect"].get("password"):
            data["collect"]["password"] = "***"
        return data


# =========================================================================
# Loading
# =========================================================================

def load_yaml_config(yaml_path: Path) -> Dict[str, Any]:
    """
    Load a YAML config file.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping.
    """
    try:
        with open(yaml_path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {yaml_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parsing error in {yaml_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {yaml_path} must contain a mapping")
    return data


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """YAML keys may use dashes (subnet-masks) like the CLI flags."""
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _as_tuple(value: Any) -> Tuple:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def _apply_section(section, overrides: Mapping[str, Any]):
    """Return a copy of a frozen section with known keys replaced."""
    known = {f.name: f for f in fields(section)}
    updates = {}
    for key, value in _normalize_keys(overrides).items():
        if key not in known or value is None:
            if key not in known:
                logger.debug(f"Ignoring unknown config key: {key}")
            continue
        if isinstance(getattr(section, key), tuple):
            value = _as_tuple(value)
            if key == "ports":
                value = tuple(int(p) for p in value)
        updates[key] = value
    return replace(section, **updates) if updates else section


def build_config(
        cli: Optional[Mapping[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
        config_path: Optional[str] = None,
) -> MagellanConfig:
    """
    Build the run configuration.

    Args:
        cli: Flag values; None values mean "not given on the command line".
            Section values go under the 'scan' and 'collect' keys.
        env: Environment mapping (defaults to os.environ).
        config_path: YAML config file (falls back to MAGELLAN_CONFIG).

    Returns:
        Frozen MagellanConfig.

    Raises:
        ConfigError: On unreadable config file.
    """
    cli = dict(cli or {})
    env = os.environ if env is None else env

    config = MagellanConfig()

    # YAML file
    path = config_path or cli.get("config_path") or env.get(ENV_CONFIG, "")
    if path:
        file_data = _normalize_keys(load_yaml_config(Path(path)))
        if "cache" in file_data:
            file_data["cache_path"] = file_data.pop("cache")
        scan_data = file_data.pop("scan", None) or {}
        collect_data = file_data.pop("collect", None) or {}
        config = _apply_section(config, file_data)
        config = replace(
            config,
            config_path=str(path),
            scan=_apply_section(config.scan, scan_data),
            collect=_apply_section(config.collect, collect_data),
        )
        logger.debug(f"Loaded config file: {path}")

    # Environment
    env_overrides = {}
    if env.get(ENV_CACHE):
        env_overrides["cache_path"] = env[ENV_CACHE]
    if env.get(ENV_ACCESS_TOKEN):
        env_overrides["access_token"] = env[ENV_ACCESS_TOKEN]
    config = _apply_section(config, env_overrides)

    # CLI flags (None = not given)
    scan_cli = cli.pop("scan", None) or {}
    collect_cli = cli.pop("collect", None) or {}
    cli.pop("config_path", None)
    config = _apply_section(config, cli)
    config = replace(
        config,
        scan=_apply_section(config.scan, scan_cli),
        collect=_apply_section(config.collect, collect_cli),
    )

    if config.timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {config.timeout}")

    return config

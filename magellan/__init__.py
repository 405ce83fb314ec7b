"""
Magellan - BMC Discovery and Inventory.

Discovers Baseboard Management Controllers on a network, crawls their
Redfish services for hardware inventory and forwards normalized records
to an inventory service.

Packages:
    magellan/
    ├── config.py        # Immutable run configuration (defaults, YAML, env, CLI)
    ├── exceptions.py    # Base exception types
    ├── cli.py           # argparse entry point (scan, list, collect, crawl, secrets)
    ├── creds/           # Encrypted secret store and credential resolution
    └── discovery/       # Scanner, Redfish crawler, ID mapping, collector, sink

Quick Start:
    from magellan.discovery import scan_for_assets, collect_inventory, CollectParams
    from magellan.creds import open_store

    assets = scan_for_assets(["10.0.0.10", "10.0.0.11"], [443], check_redfish=True)
    store = open_store("nodes.json")    # requires MASTER_KEY
    result = collect_inventory(assets, CollectParams(), store)
    for record in result.records:
        print(record["ID"], record["FQDN"])
"""

__version__ = "0.1.0"
__author__ = "Magellan Contributors"

from .exceptions import MagellanError, ConfigError

__all__ = [
    "__version__",
    "MagellanError",
    "ConfigError",
]

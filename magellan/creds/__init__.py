"""
Magellan - Credential Management.

Encrypted per-BMC credential store and the credential fallback chain
used by the crawler.

Quick Start:
    from magellan.creds import generate_master_key, open_store, get_bmc_credentials

    # export MASTER_KEY=$(magellan secrets generatekey)
    store = open_store("nodes.json")
    store.store_secret_by_id("default", '{"username": "root", "password": "pw"}')
    store.store_secret_by_id(
        "https://172.16.0.101:443",
        '{"username": "admin", "password": "bmc-pw"}',
    )

    # Explicit > per-BMC secret > default secret > blank
    creds = get_bmc_credentials(store, "https://172.16.0.101:443")
    print(f"Connecting as {creds.username}")
"""

# Encryption layer
from .encryption import (
    SecretStoreError,
    DecryptionFailed,
    generate_master_key,
    decode_master_key,
    encrypt_secret,
    decrypt_secret,
)

# Stores
from .store import (
    SecretStore,
    LocalSecretStore,
    StaticStore,
    SecretNotFound,
    MasterKeyMissing,
    DEFAULT_KEY,
    ENV_MASTER_KEY,
    open_store,
)

# Models
from .models import (
    BMCCredentials,
    is_valid_creds_json,
)

# Resolution
from .resolver import (
    CredentialResolver,
    get_bmc_credentials,
)

# Public API
__all__ = [
    # Stores
    "SecretStore",
    "LocalSecretStore",
    "StaticStore",
    "open_store",
    "DEFAULT_KEY",
    "ENV_MASTER_KEY",

    # Exceptions
    "SecretStoreError",
    "SecretNotFound",
    "MasterKeyMissing",
    "DecryptionFailed",

    # Keys
    "generate_master_key",
    "decode_master_key",
    "encrypt_secret",
    "decrypt_secret",

    # Credentials
    "BMCCredentials",
    "is_valid_creds_json",
    "CredentialResolver",
    "get_bmc_credentials",
]

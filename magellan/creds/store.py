"""
Magellan - Secret Stores.

Pluggable credential storage behind one interface:
- LocalSecretStore: encrypted JSON file, master key from the environment
- StaticStore: fixed username/password held in memory (CLI -u/-p)

File format (fully rewritten on every mutation):
    {
      "secrets": {
        "default": "<hex nonce||ciphertext||tag>",
        "https://172.16.0.101:443": "<hex ...>"
      }
    }
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from .encryption import (
    SecretStoreError,
    decode_master_key,
    decrypt_secret,
    encrypt_secret,
)
from .models import BMCCredentials

logger = logging.getLogger(__name__)

# Reserved secretID for credentials shared by every BMC
DEFAULT_KEY = "default"

ENV_MASTER_KEY = "MASTER_KEY"


class SecretNotFound(SecretStoreError):
    """Raised when no secret is stored under the requested ID."""
    pass


class MasterKeyMissing(SecretStoreError):
    """Raised when MASTER_KEY is not set in the environment."""
    pass


class SecretStore(ABC):
    """Capability interface implemented by every credential backend."""

    @abstractmethod
    def get_secret_by_id(self, secret_id: str) -> str:
        """Return the plaintext secret. Raises SecretNotFound."""

    @abstractmethod
    def store_secret_by_id(self, secret_id: str, secret: str) -> None:
        """Store (or replace) a secret."""

    @abstractmethod
    def list_secrets(self) -> Dict[str, str]:
        """Return a copy of secretID -> stored value."""

    @abstractmethod
    def remove_secret_by_id(self, secret_id: str) -> None:
        """Remove a secret. Raises SecretNotFound if absent."""


# =========================================================================
# Local encrypted file store
# =========================================================================

class LocalSecretStore(SecretStore):
    """
    Encrypted secrets in a local JSON file.

    Reads take the lock only to copy the ciphertext out; decryption runs
    outside it. Mutations encrypt first, then update the map and rewrite
    the file while holding the lock, so concurrent writers never lose
    updates.

    Usage:
        key = generate_master_key()
        store = LocalSecretStore(key, "nodes.json", create=True)
        store.store_secret_by_id("default", '{"username": "root", "password": "pw"}')
        store.get_secret_by_id("default")
    """

    def __init__(self, master_key_hex: str, filename: Union[str, Path], create: bool = True):
        self._master_key = decode_master_key(master_key_hex)
        self.filename = Path(filename)
        self._lock = threading.Lock()

        if not self.filename.exists():
            if not create:
                raise SecretStoreError(f"file {self.filename} does not exist")
            self._secrets: Dict[str, str] = {}
            self._save()
        else:
            self._secrets = self._load()

    def _load(self) -> Dict[str, str]:
        try:
            text = self.filename.read_text(encoding="utf-8")
        except OSError as e:
            raise SecretStoreError(f"unable to open secret file {self.filename}: {e}") from e

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SecretStoreError(f"unable to load secrets from file {self.filename}: {e}") from e

        secrets_map = data.get("secrets", {}) if isinstance(data, dict) else None
        if not isinstance(secrets_map, dict):
            raise SecretStoreError(f"malformed secrets file {self.filename}")
        return {str(k): str(v) for k, v in secrets_map.items()}

    def _save(self) -> None:
        """Rewrite the whole file. Caller holds the lock (or is __init__)."""
        if self.filename.parent and not self.filename.parent.exists():
            self.filename.parent.mkdir(parents=True, exist_ok=True)
        with open(self.filename, "w", encoding="utf-8") as f:
            json.dump({"secrets": self._secrets}, f, indent=2)
            f.write("\n")

    def get_secret_by_id(self, secret_id: str) -> str:
        with self._lock:
            encrypted = self._secrets.get(secret_id)
        if encrypted is None:
            raise SecretNotFound(f"no secret found for {secret_id}")
        return decrypt_secret(self._master_key, secret_id, encrypted)

    def store_secret_by_id(self, secret_id: str, secret: str) -> None:
        encrypted = encrypt_secret(self._master_key, secret_id, secret)
        with self._lock:
            self._secrets[secret_id] = encrypted
            self._save()

    def list_secrets(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._secrets)

    def remove_secret_by_id(self, secret_id: str) -> None:
        with self._lock:
            if secret_id not in self._secrets:
                raise SecretNotFound(f"no secret found for {secret_id}")
            del self._secrets[secret_id]
            self._save()

    def __contains__(self, secret_id: str) -> bool:
        with self._lock:
            return secret_id in self._secrets


# =========================================================================
# Static in-memory store
# =========================================================================

class StaticStore(SecretStore):
    """
    Fixed credentials returned for every secretID.

    Used when credentials come from -u/-p flags instead of a secrets file.
    Store and remove are no-ops.
    """

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    def _creds_json(self) -> str:
        return BMCCredentials(self.username, self.password).to_json()

    def get_secret_by_id(self, secret_id: str) -> str:
        return self._creds_json()

    def store_secret_by_id(self, secret_id: str, secret: str) -> None:
        pass

    def list_secrets(self) -> Dict[str, str]:
        return {"static_creds": self._creds_json()}

    def remove_secret_by_id(self, secret_id: str) -> None:
        pass


def open_store(
        filename: Union[str, Path],
        master_key: Optional[str] = None,
        create: bool = True,
) -> LocalSecretStore:
    """
    Open (or create) the local secret store.

    Args:
        filename: Secrets JSON file.
        master_key: Hex master key; read from MASTER_KEY when omitted.
        create: Create the file when missing; read-only callers pass False.

    Raises:
        SecretStoreError: If no filename given, or the file is missing
            and create is False.
        MasterKeyMissing: If no master key is available.
    """
    if not filename:
        raise SecretStoreError("path to secret store required")

    key = master_key or os.environ.get(ENV_MASTER_KEY, "")
    if not key:
        raise MasterKeyMissing(f"{ENV_MASTER_KEY} environment variable not set")

    logger.debug(f"Opening secret store: {filename}")
    return LocalSecretStore(key, filename, create=create)


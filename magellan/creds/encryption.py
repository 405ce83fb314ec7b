"""
Magellan - Encryption Layer.

Handles all cryptographic operations for the local secret store:
- Per-secret key derivation from the master key (HKDF-SHA256)
- Authenticated encryption (AES-256-GCM)
- Master key generation

This module is stateless - callers pass the master key on every call.
The master key itself is never written anywhere.

Security notes:
- Each secretID gets an independent 32-byte key: HKDF(master, salt=secretID)
- A fresh 12-byte random nonce per encryption
- Stored form is hex(nonce || ciphertext || tag)
- The GCM tag is the only integrity check; a wrong master key, wrong
  secretID or corrupted blob all fail the same way
"""

import binascii
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import MagellanError

# AES-256
KEY_SIZE = 32

# Standard GCM nonce size in bytes (96 bits)
NONCE_SIZE = 12


class SecretStoreError(MagellanError):
    """Base exception for secret store operations."""
    pass


class DecryptionFailed(SecretStoreError):
    """Raised when decryption fails (corrupted blob or wrong key)."""
    pass


def generate_master_key() -> str:
    """Create a random 32-byte master key, hex encoded."""
    return secrets.token_bytes(KEY_SIZE).hex()


def decode_master_key(master_key_hex: str) -> bytes:
    """
    Decode a hex master key.

    Raises:
        SecretStoreError: If the value is not valid hex.
    """
    try:
        return bytes.fromhex(master_key_hex.strip())
    except ValueError as e:
        raise SecretStoreError(
            "unable to generate masterkey from hex representation"
        ) from e


def derive_key(master_key: bytes, secret_id: str) -> bytes:
    """Derive the AES key for one secretID using HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=secret_id.encode("utf-8"),
        info=None,
    )
    return hkdf.derive(master_key)


def encrypt(key: bytes, plaintext: bytes) -> str:
    """
    Encrypt with AES-GCM.

    Returns:
        Hex string of nonce || ciphertext || tag.
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return (nonce + ciphertext).hex()


def decrypt(key: bytes, encrypted: str) -> str:
    """
    Decrypt a hex nonce || ciphertext || tag blob.

    Raises:
        DecryptionFailed: Bad hex, short blob, or GCM tag mismatch.
    """
    try:
        data = binascii.unhexlify(encrypted)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailed("Decryption failed - stored value is not valid hex") from e

    if len(data) < NONCE_SIZE:
        raise DecryptionFailed("Decryption failed - ciphertext too short")

    nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionFailed(
            "Decryption failed - data may be corrupted or key incorrect"
        ) from e
    return plaintext.decode("utf-8")


def encrypt_secret(master_key: bytes, secret_id: str, secret: str) -> str:
    """Encrypt a secret under the key derived for secret_id."""
    return encrypt(derive_key(master_key, secret_id), secret.encode("utf-8"))


def decrypt_secret(master_key: bytes, secret_id: str, encrypted: str) -> str:
    """Decrypt a secret stored under secret_id."""
    return decrypt(derive_key(master_key, secret_id), encrypted)

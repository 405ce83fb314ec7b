"""
Magellan - Credential Models.

BMC credentials are stored in the secret store as a JSON document:
    {"username": "root", "password": "secret"}
"""

import json
from dataclasses import dataclass, asdict
from typing import Any, Dict

from .encryption import SecretStoreError


@dataclass
class BMCCredentials:
    """Username/password pair for a BMC Redfish service."""
    username: str = ""
    password: str = ""

    @property
    def is_blank(self) -> bool:
        return not self.username and not self.password

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str) -> 'BMCCredentials':
        """
        Parse stored credentials.

        Raises:
            SecretStoreError: If the value is not a JSON object.
        """
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise SecretStoreError(f"credentials are not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise SecretStoreError("credentials must be a JSON object")
        return cls(
            username=str(parsed.get("username", "") or ""),
            password=str(parsed.get("password", "") or ""),
        )

    @classmethod
    def from_basic(cls, value: str) -> 'BMCCredentials':
        """
        Parse 'username:password'.

        Raises:
            ValueError: If the value does not split into exactly two parts.
        """
        parts = value.split(":")
        if len(parts) != 2:
            raise ValueError(
                f"expected 2 arguments in [username:password] format but got {len(parts)}"
            )
        return cls(username=parts[0], password=parts[1])


def is_valid_creds_json(value: str) -> bool:
    """True if value is a JSON object carrying both username and password."""
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return False
    return (
            isinstance(parsed, dict)
            and "username" in parsed
            and "password" in parsed
    )

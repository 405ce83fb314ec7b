"""
Magellan - Credential Resolution.

Resolves the credentials used to crawl one BMC. Sources are tried in
priority order and the first hit wins:

    explicit (call site -u/-p) > secret for the URI > 'default' secret > blank

Blank credentials are not an error; they are logged as degraded and the
crawl proceeds (the BMC may allow anonymous reads, or reject with 401).
"""

import logging
from typing import Callable, List, Optional, Tuple

from .models import BMCCredentials
from .store import DEFAULT_KEY, SecretNotFound, SecretStore

logger = logging.getLogger(__name__)

# A source returns credentials or None to pass to the next source
CredentialSource = Callable[[], Optional[BMCCredentials]]


def explicit_source(username: str = "", password: str = "") -> CredentialSource:
    """Credentials given at the call site."""
    def source() -> Optional[BMCCredentials]:
        if username or password:
            return BMCCredentials(username, password)
        return None
    return source


def store_source(store: Optional[SecretStore], secret_id: str) -> CredentialSource:
    """Credentials held in a secret store under secret_id."""
    def source() -> Optional[BMCCredentials]:
        if store is None:
            return None
        try:
            secret = store.get_secret_by_id(secret_id)
        except SecretNotFound:
            logger.debug(f"No credentials stored for '{secret_id}'")
            return None
        return BMCCredentials.from_json(secret)
    return source


class CredentialResolver:
    """
    Ordered chain of credential sources.

    Usage:
        resolver = CredentialResolver.for_target(store, uri, username, password)
        creds, source_name = resolver.resolve()
    """

    def __init__(self, sources: List[Tuple[str, CredentialSource]]):
        self.sources = sources

    @classmethod
    def for_target(
            cls,
            store: Optional[SecretStore],
            secret_id: str,
            username: str = "",
            password: str = "",
            use_default: bool = True,
    ) -> 'CredentialResolver':
        """Standard chain for a BMC identified by its URI."""
        sources = [
            ("explicit", explicit_source(username, password)),
            ("uri", store_source(store, secret_id)),
        ]
        if use_default and secret_id != DEFAULT_KEY:
            sources.append(("default", store_source(store, DEFAULT_KEY)))
        return cls(sources)

    def resolve(self) -> Tuple[BMCCredentials, str]:
        """
        Try each source in order.

        Returns:
            (credentials, source_name); source_name is 'blank' when
            every source came up empty.

        Raises:
            SecretStoreError: A stored value could not be decrypted or parsed.
        """
        for name, source in self.sources:
            creds = source()
            if creds is not None:
                logger.debug(f"Using {name} credentials")
                return creds, name
        return BMCCredentials(), "blank"


def get_bmc_credentials(
        store: Optional[SecretStore],
        secret_id: str,
        username: str = "",
        password: str = "",
        use_default: bool = True,
) -> BMCCredentials:
    """
    Resolve credentials for secret_id.

    When secret_id is the reserved 'default' key only the default secret
    is consulted, and a missing default is an error.

    Raises:
        SecretNotFound: secret_id == DEFAULT_KEY and nothing is stored.
        SecretStoreError: Stored credentials are corrupt.
    """
    if secret_id == DEFAULT_KEY and not (username or password):
        logger.info("Fetching default credentials")
        if store is None:
            raise SecretNotFound(f"no secret found for {DEFAULT_KEY}")
        return BMCCredentials.from_json(store.get_secret_by_id(DEFAULT_KEY))

    resolver = CredentialResolver.for_target(
        store, secret_id, username, password, use_default=use_default
    )
    creds, source = resolver.resolve()
    if source == "blank":
        logger.warning(
            f"No credentials found for '{secret_id}', they will be blank "
            f"unless overridden by CLI flags"
        )
    elif source == "default":
        logger.info(f"Specific credentials not found for '{secret_id}', using default")
    return creds


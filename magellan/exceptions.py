"""
Magellan - Base Exceptions.

Component modules define their own typed errors on top of these:
- creds.encryption: SecretStoreError, DecryptionFailed
- creds.store: SecretNotFound, MasterKeyMissing
- discovery.redfish: CrawlError, NotABMCError, AuthenticationFailed, RedfishTransportError,
  RedfishParseError
- discovery.idmap: IdMapError
- discovery.sink: SinkError
"""


class MagellanError(Exception):
    """Base exception for all magellan errors."""
    pass


class ConfigError(MagellanError):
    """Raised for invalid or missing configuration. Fatal to the command."""
    pass

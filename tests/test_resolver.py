"""
tests/test_resolver.py -- Credential fallback chain.

Order under test: explicit > secret for the URI > 'default' secret > blank.
"""

import pytest

from magellan.creds.models import BMCCredentials
from magellan.creds.resolver import CredentialResolver, get_bmc_credentials
from magellan.creds.store import DEFAULT_KEY, SecretNotFound

URI = "https://172.16.0.101:443"


@pytest.fixture
def populated_store(secret_store):
    secret_store.store_secret_by_id(DEFAULT_KEY, BMCCredentials("root", "default-pw").to_json())
    secret_store.store_secret_by_id(URI, BMCCredentials("admin", "bmc-pw").to_json())
    return secret_store


class TestCredentialResolution:
    """get_bmc_credentials() priority order."""

    def test_explicit_wins(self, populated_store):
        creds = get_bmc_credentials(populated_store, URI, "cli-user", "cli-pw")
        assert creds == BMCCredentials("cli-user", "cli-pw")

    def test_uri_secret(self, populated_store):
        assert get_bmc_credentials(populated_store, URI) == BMCCredentials("admin", "bmc-pw")

    def test_default_fallback(self, populated_store):
        creds = get_bmc_credentials(populated_store, "https://10.0.0.9:443")
        assert creds == BMCCredentials("root", "default-pw")

    def test_default_disabled(self, populated_store):
        creds = get_bmc_credentials(populated_store, "https://10.0.0.9:443", use_default=False)
        assert creds.is_blank

    def test_blank_without_store(self):
        assert get_bmc_credentials(None, URI).is_blank

    def test_default_key_direct(self, populated_store):
        assert get_bmc_credentials(populated_store, DEFAULT_KEY) == BMCCredentials("root", "default-pw")

    def test_default_key_missing(self, secret_store):
        with pytest.raises(SecretNotFound):
            get_bmc_credentials(secret_store, DEFAULT_KEY)

    def test_default_key_without_store(self):
        with pytest.raises(SecretNotFound):
            get_bmc_credentials(None, DEFAULT_KEY)


class TestCredentialResolver:
    """CredentialResolver reports which source answered."""

    def test_source_names(self, populated_store):
        _, source = CredentialResolver.for_target(populated_store, URI).resolve()
        assert source == "uri"
        _, source = CredentialResolver.for_target(populated_store, "other").resolve()
        assert source == "default"
        _, source = CredentialResolver.for_target(None, "other").resolve()
        assert source == "blank"

    def test_custom_chain_order(self):
        calls = []

        def first():
            calls.append("first")
            return None

        def second():
            calls.append("second")
            return BMCCredentials("u", "p")

        def third():
            calls.append("third")
            return BMCCredentials("x", "y")

        creds, source = CredentialResolver(
            [("first", first), ("second", second), ("third", third)]
        ).resolve()
        assert (creds, source) == (BMCCredentials("u", "p"), "second")
        assert calls == ["first", "second"]

"""
tests/test_config.py -- Layered run configuration.

defaults < YAML config file < environment < CLI flags
"""

import dataclasses

import pytest

from magellan.config import (
    DEFAULT_SECRETS_FILE,
    ENV_ACCESS_TOKEN,
    ENV_CACHE,
    ENV_CONFIG,
    MagellanConfig,
    build_config,
)
from magellan.exceptions import ConfigError


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "magellan.yaml"
    path.write_text(
        "concurrency: 64\n"
        "timeout: 10\n"
        "cache: /var/tmp/file.db\n"
        "access-token: file-token\n"
        "scan:\n"
        "  subnets: [172.16.0.0/24]\n"
        "  ports: ['443', 5000]\n"
        "collect:\n"
        "  host: https://smd.example.com\n"
        "  force_update: true\n"
    )
    return path


class TestDefaults:
    """Built-in defaults."""

    def test_defaults(self):
        config = build_config(env={})
        assert config.concurrency == -1
        assert config.timeout == 30
        assert config.secrets_file == DEFAULT_SECRETS_FILE
        assert config.cache_path.endswith("magellan.db")
        assert config.scan.scheme == "https"
        assert config.collect.insecure is True
        assert config.collect.bmc_id_map is None

    def test_frozen(self):
        config = build_config(env={})
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.timeout = 5


class TestLayering:
    """Each layer overrides the one below it."""

    def test_yaml_file(self, config_file):
        config = build_config(env={}, config_path=str(config_file))
        assert config.concurrency == 64
        assert config.timeout == 10
        assert config.cache_path == "/var/tmp/file.db"
        assert config.access_token == "file-token"
        assert config.scan.subnets == ("172.16.0.0/24",)
        assert config.scan.ports == (443, 5000)
        assert config.collect.host == "https://smd.example.com"
        assert config.collect.force_update is True
        assert config.config_path == str(config_file)

    def test_empty_id_map_kept(self, tmp_path):
        """An empty map in the file is still a configured map."""
        path = tmp_path / "magellan.yaml"
        path.write_text("collect:\n  bmc_id_map: \"\"\n")
        config = build_config(env={}, config_path=str(path))
        assert config.collect.bmc_id_map == ""

    def test_config_path_from_env(self, config_file):
        config = build_config(env={ENV_CONFIG: str(config_file)})
        assert config.concurrency == 64

    def test_env_over_file(self, config_file):
        env = {ENV_CACHE: "/env/cache.db", ENV_ACCESS_TOKEN: "env-token"}
        config = build_config(env=env, config_path=str(config_file))
        assert config.cache_path == "/env/cache.db"
        assert config.access_token == "env-token"

    def test_cli_over_env(self, config_file):
        cli = {
            "timeout": 5,
            "access_token": "cli-token",
            "concurrency": None,
            "scan": {"ports": [8443], "subnets": None},
            "collect": {"username": "root"},
        }
        config = build_config(cli, env={ENV_ACCESS_TOKEN: "env-token"}, config_path=str(config_file))
        assert config.timeout == 5
        assert config.access_token == "cli-token"
        # None means "not given": file value kept
        assert config.concurrency == 64
        assert config.scan.ports == (8443,)
        assert config.scan.subnets == ("172.16.0.0/24",)
        assert config.collect.username == "root"
        assert config.collect.host == "https://smd.example.com"

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("bogus: 1\nscan:\n  nope: 2\n")
        config = build_config(env={}, config_path=str(path))
        assert config == dataclasses.replace(MagellanConfig(cache_path=config.cache_path), config_path=str(path))


class TestErrors:
    """Invalid configuration."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            build_config(env={}, config_path=str(tmp_path / "absent.yaml"))

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("a: [1,\n")
        with pytest.raises(ConfigError, match="YAML parsing error"):
            build_config(env={}, config_path=str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            build_config(env={}, config_path=str(path))

    def test_non_positive_timeout(self):
        with pytest.raises(ConfigError, match="Timeout"):
            build_config({"timeout": 0}, env={})


class TestMasking:
    """to_dict() hides secrets."""

    def test_token_and_password_masked(self):
        config = build_config({"access_token": "t", "collect": {"password": "p"}}, env={})
        data = config.to_dict()
        assert data["access_token"] == "***"
        assert data["collect"]["password"] == "***"

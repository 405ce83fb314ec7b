"""
tests/test_cache.py -- SQLite scan cache.
"""

from datetime import datetime

import pytest

from magellan.discovery.cache import CacheError, ScanCache
from magellan.discovery.models import RemoteAsset


@pytest.fixture
def cache(tmp_path):
    return ScanCache(tmp_path / "cache" / "magellan.db")


def asset(host, port=443, state=True):
    return RemoteAsset(host=host, port=port, state=state, timestamp=datetime(2024, 5, 1, 12, 0, 0))


class TestScanCache:
    """insert/get/delete round trips."""

    def test_read_without_file(self, cache):
        with pytest.raises(CacheError, match="no scan cache"):
            cache.get_assets()
        assert not cache.path.exists()

    def test_insert_and_get(self, cache):
        assert cache.insert_assets([asset("10.0.0.2"), asset("10.0.0.1", state=False)]) == 2
        assets = cache.get_assets()
        assert [a.host for a in assets] == ["10.0.0.1", "10.0.0.2"]
        assert assets[0].state is False
        assert assets[1].state is True
        assert assets[1].timestamp == datetime(2024, 5, 1, 12, 0, 0)

    def test_rescan_replaces_row(self, cache):
        cache.insert_assets([asset("10.0.0.1", state=False)])
        cache.insert_assets([asset("10.0.0.1", state=True)])
        assets = cache.get_assets()
        assert len(assets) == 1
        assert assets[0].state is True

    def test_insert_nothing(self, cache):
        assert cache.insert_assets([]) == 0
        assert not cache.path.exists()

    def test_delete_by_host_and_port(self, cache):
        cache.insert_assets([asset("10.0.0.1", 443), asset("10.0.0.1", 5000), asset("10.0.0.2", 443)])
        assert cache.delete_assets([RemoteAsset(host="10.0.0.1", port=5000)]) == 1
        assert cache.delete_assets([RemoteAsset(host="", port=443)]) == 2
        assert cache.get_assets() == []

    def test_delete_whole_host(self, cache):
        cache.insert_assets([asset("10.0.0.1", 443), asset("10.0.0.1", 5000)])
        assert cache.delete_assets([RemoteAsset(host="10.0.0.1", port=0)]) == 2

    def test_clear(self, cache):
        cache.insert_assets([asset("10.0.0.1")])
        cache.clear()
        assert cache.get_assets() == []

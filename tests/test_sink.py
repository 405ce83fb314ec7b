"""
tests/test_sink.py -- Inventory service client.
"""

import pytest
import requests

from conftest import FakeRedfishSession
from magellan.discovery.sink import (
    ENDPOINTS_PATH, SinkError, SmdClient, build_headers, load_records, send_records,
)

SMD = "https://smd.example.com"


@pytest.fixture
def headers():
    return build_headers("tok")


class TestSmdClient:
    """add/update/add_or_update."""

    def test_add_posts(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): (201, {})})
        SmdClient(SMD + "/", session=session).add('{"ID": "x0c0s0b0"}', headers)

        assert session.calls == [("POST", ENDPOINTS_PATH)]
        sent = session.request_kwargs[0]
        assert sent["data"] == b'{"ID": "x0c0s0b0"}'
        assert sent["headers"]["Authorization"] == "Bearer tok"

    def test_non_2xx_raises(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): (409, {"detail": "exists"})})
        with pytest.raises(SinkError, match="409"):
            SmdClient(SMD, session=session).add("{}", headers)

    def test_transport_error(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): requests.ConnectionError("down")})
        with pytest.raises(SinkError):
            SmdClient(SMD, session=session).add("{}", headers)

    def test_force_update_puts(self, headers):
        session = FakeRedfishSession({
            ("POST", ENDPOINTS_PATH): (409, {}),
            ("PUT", f"{ENDPOINTS_PATH}/x0c0s0b0"): (200, {}),
        })
        SmdClient(SMD, session=session).add_or_update("x0c0s0b0", "{}", headers, force_update=True)
        assert session.calls == [("POST", ENDPOINTS_PATH), ("PUT", f"{ENDPOINTS_PATH}/x0c0s0b0")]

    def test_no_update_without_force(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): (409, {})})
        with pytest.raises(SinkError):
            SmdClient(SMD, session=session).add_or_update("x0c0s0b0", "{}", headers)
        assert session.calls == [("POST", ENDPOINTS_PATH)]

    def test_ca_cert_sets_verify(self, tmp_path):
        session = FakeRedfishSession()
        SmdClient(SMD, ca_cert=str(tmp_path / "ca.pem"), session=session)
        assert session.verify == str(tmp_path / "ca.pem")


class TestHeaders:
    """build_headers()."""

    def test_without_token(self):
        assert build_headers() == {"Content-Type": "application/json"}

    def test_with_token(self):
        assert build_headers("abc")["Authorization"] == "Bearer abc"


class TestLoadRecords:
    """load_records() from files and inline text."""

    def test_single_record(self):
        assert load_records('{"ID": "x1000c0s0b0"}') == [{"ID": "x1000c0s0b0"}]

    def test_list_from_file(self, tmp_path):
        path = tmp_path / "inventory.json"
        path.write_text('[{"ID": "a"}, {"ID": "b"}]')
        assert [r["ID"] for r in load_records(f"@{path}")] == ["a", "b"]

    def test_yaml_by_extension(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("- ID: x1000c0s0b0\n  FQDN: bmc1\n")
        assert load_records(f"@{path}") == [{"ID": "x1000c0s0b0", "FQDN": "bmc1"}]

    def test_empty_input(self):
        assert load_records("   ") == []

    @pytest.mark.parametrize("text", ['"just a string"', '[1, 2]', '{not json'])
    def test_not_records(self, text):
        with pytest.raises(ValueError):
            load_records(text)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ValueError, match="failed to read"):
            load_records(f"@{tmp_path / 'absent.json'}")


class TestSendRecords:
    """send_records() counts."""

    def test_counts_sent_and_failed(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): (201, {})})
        records = [{"ID": "x1"}, {"FQDN": "no-id"}, {"ID": "x2"}]
        assert send_records(SmdClient(SMD, session=session), records, headers) == (2, 1)
        assert len(session.calls) == 2

    def test_conflict_counts_as_failed(self, headers):
        session = FakeRedfishSession({("POST", ENDPOINTS_PATH): (409, {})})
        assert send_records(SmdClient(SMD, session=session), [{"ID": "x1"}], headers) == (0, 1)

    def test_force_update(self, headers):
        session = FakeRedfishSession({
            ("POST", ENDPOINTS_PATH): (409, {}),
            ("PUT", f"{ENDPOINTS_PATH}/x1"): (200, {}),
        })
        sink = SmdClient(SMD, session=session)
        assert send_records(sink, [{"ID": "x1"}], headers, force_update=True) == (1, 0)
        assert session.calls[-1] == ("PUT", f"{ENDPOINTS_PATH}/x1")

"""
tests/test_crawler.py -- Redfish client and BMC crawler.

Runs against FakeRedfishSession (conftest.py); no sockets are opened.

Coverage:
  - Chassis/Systems merge with chassis attributes copied onto systems
  - Session login and logout on success and on error
  - 404 service root -> NotABMCError, 401 -> AuthenticationFailed,
    transport errors -> RedfishTransportError
  - Manager MAC correlation and BMC detection
  - Malformed vendor data (null Links, non-dict members, non-JSON bodies)
    confined to the resource that carries it
"""

import pytest
import requests

from conftest import BMC_IP, SESSION_LOCATION, SESSIONS_PATH, FakeRedfishSession
from magellan.discovery.crawler import (
    CrawlerConfig,
    crawl_bmc_for_managers,
    crawl_bmc_for_systems,
    find_mac_address_with_ip,
    get_bmc_info,
    is_bmc,
)
from magellan.discovery.models import EthernetInterface, Manager
from magellan.discovery.redfish import (
    AuthenticationFailed,
    NotABMCError,
    RedfishClient,
    RedfishParseError,
    RedfishTransportError,
)

URI = f"https://{BMC_IP}:443"


@pytest.fixture
def config():
    return CrawlerConfig(uri=URI, username="root", password="pw")


class TestCrawlSystems:
    """crawl_bmc_for_systems() graph walk."""

    def test_systems_merged(self, config, client_factory):
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1", "node2"]

    def test_chassis_attributes_copied(self, config, client_factory):
        node1, node2 = crawl_bmc_for_systems(config, client_factory)
        assert node1.chassis_sku == "SKU-100"
        assert node1.chassis_serial_number == "CH-0001"
        assert node1.chassis_asset_tag == "rack-12"
        # node2 is not linked from any chassis
        assert node2.chassis_sku == ""

    def test_system_details(self, config, client_factory):
        node1 = crawl_bmc_for_systems(config, client_factory)[0]
        assert node1.uri == f"{URI}/redfish/v1/Systems/1"
        assert node1.processor_count == 2
        assert node1.memory_total == 256.0
        assert node1.power_state == "On"
        assert len(node1.ethernet_interfaces) == 1
        eth = node1.ethernet_interfaces[0]
        assert eth.mac == "aa:bb:cc:00:00:01"
        assert eth.ip == "10.1.0.1"
        assert eth.enabled is True

    def test_system_read_once(self, config, client_factory):
        """System 1 appears under the chassis and /Systems but is fetched once."""
        crawl_bmc_for_systems(config, client_factory)
        calls = client_factory.sessions[0].calls
        assert calls.count(("GET", "/redfish/v1/Systems/1")) == 1

    def test_session_login_and_logout(self, config, client_factory):
        crawl_bmc_for_systems(config, client_factory)
        session = client_factory.sessions[0]
        assert ("POST", SESSIONS_PATH) in session.calls
        assert session.calls[-1] == ("DELETE", SESSION_LOCATION)
        # Token header used after login
        headers = session.request_kwargs[-2]["headers"]
        assert headers["X-Auth-Token"] == "token-123"

    def test_missing_chassis_collection(self, config, redfish_routes, client_factory):
        del redfish_routes[("GET", "/redfish/v1/Chassis")]
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1", "node2"]
        assert systems[0].chassis_sku == ""

    def test_broken_member_skipped(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems/2")] = (500, {"error": "oops"})
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1"]


class TestCrawlErrors:
    """Failures that abort a single host."""

    def test_not_a_bmc(self, config, redfish_routes, client_factory):
        del redfish_routes[("GET", "/redfish/v1/")]
        with pytest.raises(NotABMCError, match="probably not a BMC"):
            crawl_bmc_for_systems(config, client_factory)

    def test_service_root_401(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/")] = (401, {})
        with pytest.raises(AuthenticationFailed):
            crawl_bmc_for_systems(config, client_factory)

    def test_login_401(self, config, redfish_routes, client_factory):
        redfish_routes[("POST", SESSIONS_PATH)] = (401, {})
        with pytest.raises(AuthenticationFailed):
            crawl_bmc_for_managers(config, client_factory)

    def test_transport_error(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/")] = requests.ConnectionError("refused")
        with pytest.raises(RedfishTransportError):
            crawl_bmc_for_systems(config, client_factory)

    def test_logout_after_mid_crawl_error(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems")] = requests.Timeout("slow")
        with pytest.raises(RedfishTransportError):
            crawl_bmc_for_systems(config, client_factory)
        assert client_factory.sessions[0].calls[-1] == ("DELETE", SESSION_LOCATION)

    def test_basic_auth_when_no_session_service(self, config, redfish_routes, client_factory):
        del redfish_routes[("POST", SESSIONS_PATH)]
        systems = crawl_bmc_for_systems(config, client_factory)
        assert len(systems) == 2
        session = client_factory.sessions[0]
        assert session.auth == ("root", "pw")
        assert ("DELETE", SESSION_LOCATION) not in session.calls


class TestRedfishClient:
    """RedfishClient details."""

    def test_blank_credentials_skip_login(self, redfish_routes):
        session = FakeRedfishSession(redfish_routes)
        client = RedfishClient(URI, session=session)
        client.connect()
        client.close()
        assert ("POST", SESSIONS_PATH) not in session.calls

    def test_context_manager(self, redfish_routes):
        session = FakeRedfishSession(redfish_routes)
        with RedfishClient(URI, "root", "pw", session=session) as client:
            assert client.get("/redfish/v1/Managers/BMC")["ManagerType"] == "BMC"
        assert session.calls[-1] == ("DELETE", SESSION_LOCATION)

    def test_scheme_added(self):
        client = RedfishClient("10.0.0.1", session=FakeRedfishSession())
        assert client.base_url == "https://10.0.0.1"

    def test_verify_follows_insecure(self, redfish_routes):
        session = FakeRedfishSession(redfish_routes)
        RedfishClient(URI, session=session, insecure=False).connect()
        assert session.request_kwargs[0]["verify"] is True


class TestManagers:
    """Managers, BMC detection and MAC correlation."""

    def test_crawl_managers(self, config, client_factory):
        managers = crawl_bmc_for_managers(config, client_factory)
        assert len(managers) == 1
        bmc = managers[0]
        assert bmc.manager_type == "BMC"
        assert bmc.firmware_version == "1.2.3"
        assert bmc.ethernet_interfaces[0].mac == "de:ad:be:ef:00:01"
        assert bmc.ethernet_interfaces[0].ipv4_addresses == [BMC_IP]

    def test_find_mac(self, config, client_factory):
        managers = crawl_bmc_for_managers(config, client_factory)
        assert find_mac_address_with_ip(managers, BMC_IP) == "de:ad:be:ef:00:01"
        assert find_mac_address_with_ip(managers, "10.9.9.9") == ""

    def test_find_mac_static_after_dynamic(self):
        manager = Manager(ethernet_interfaces=[
            EthernetInterface(mac="11:11:11:11:11:11", ipv4_addresses=["10.0.0.1"]),
            EthernetInterface(mac="22:22:22:22:22:22", ipv4_addresses=["10.0.0.5", "10.0.0.2"]),
        ])
        assert find_mac_address_with_ip([manager], "10.0.0.2") == "22:22:22:22:22:22"

    @pytest.mark.parametrize("manager_type,expected", [
        ("BMC", True),
        ("ManagementController", True),
        ("EnclosureManager", False),
        ("", False),
    ])
    def test_is_bmc(self, manager_type, expected):
        assert is_bmc(Manager(manager_type=manager_type)) is expected

    def test_is_bmc_none(self):
        assert is_bmc(None) is False

    def test_bmc_info(self):
        info = get_bmc_info([
            Manager(manager_type="BMC", firmware_version="1.0"),
            Manager(manager_type="EnclosureManager"),
        ])
        assert [i.firmware_version for i in info] == ["1.0"]


class TestMalformedResources:
    """Vendor quirks stay confined to the resource that carries them."""

    def test_null_chassis_links(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Chassis/1")]["Links"] = None
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1", "node2"]
        assert systems[0].chassis_sku == ""

    def test_null_system_links(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems/2")]["Links"] = None
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1", "node2"]

    def test_non_dict_link_entries(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Chassis/1")]["Links"]["ComputerSystems"] = [
            None, "Systems/1", {"@odata.id": "/redfish/v1/Systems/1"},
        ]
        redfish_routes[("GET", "/redfish/v1/Systems")]["Members"].insert(0, "bogus")
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1", "node2"]
        assert systems[0].chassis_sku == "SKU-100"

    def test_null_members(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Managers")]["Members"] = None
        assert crawl_bmc_for_managers(config, client_factory) == []

    def test_bad_interface_json_skipped(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems/1/EthernetInterfaces/1")] = b"<html>oops</html>"
        node1, node2 = crawl_bmc_for_systems(config, client_factory)
        assert node1.name == "node1"
        assert node1.ethernet_interfaces == []

    def test_bad_system_json_skipped(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems/2")] = b"not json"
        systems = crawl_bmc_for_systems(config, client_factory)
        assert [s.name for s in systems] == ["node1"]

    def test_bad_service_root_json(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/")] = b"<html>login page</html>"
        with pytest.raises(RedfishParseError):
            crawl_bmc_for_systems(config, client_factory)

    def test_interface_transport_error_aborts(self, config, redfish_routes, client_factory):
        redfish_routes[("GET", "/redfish/v1/Systems/1/EthernetInterfaces/1")] = requests.ConnectionError("reset")
        with pytest.raises(RedfishTransportError):
            crawl_bmc_for_systems(config, client_factory)

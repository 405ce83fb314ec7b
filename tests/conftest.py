"""
tests/conftest.py -- Shared fixtures for the magellan test suite.

This module provides:
  - master_key / secret_store: a fresh encrypted store in tmp_path
  - tcp_listener: a localhost port that accepts connections
  - closed_port: a localhost port with nothing listening
  - FakeRedfishSession: a requests.Session that answers from a route table
  - redfish_routes: a small BMC (one chassis, two systems, one BMC manager)
  - client_factory: builds RedfishClients bound to FakeRedfishSessions

No test touches the network beyond localhost.
"""

import copy
import json
import socket
import threading
from typing import Any, Dict, List, Tuple
from urllib.parse import urlparse

import pytest
import requests

from magellan.creds.encryption import generate_master_key
from magellan.creds.store import LocalSecretStore
from magellan.discovery.redfish import RedfishClient

BMC_IP = "172.16.0.101"
SESSIONS_PATH = "/redfish/v1/SessionService/Sessions"
SESSION_LOCATION = "/redfish/v1/SessionService/Sessions/1"


# ---------------------------------------------------------------------------
# Secret store
# ---------------------------------------------------------------------------


@pytest.fixture
def master_key() -> str:
    return generate_master_key()


@pytest.fixture
def secret_store(tmp_path, master_key) -> LocalSecretStore:
    return LocalSecretStore(master_key, tmp_path / "nodes.json", create=True)


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


@pytest.fixture
def tcp_listener():
    """Yield the port of a localhost listener that accepts and closes connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    server.settimeout(0.2)
    stop = threading.Event()

    def accept_loop():
        while not stop.is_set():
            try:
                conn, _ = server.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            conn.close()

    thread = threading.Thread(target=accept_loop, daemon=True)
    thread.start()
    try:
        yield server.getsockname()[1]
    finally:
        stop.set()
        thread.join(timeout=2)
        server.close()


@pytest.fixture
def closed_port() -> int:
    """A localhost port that was free a moment ago (nothing listening)."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


# ---------------------------------------------------------------------------
# Fake Redfish service
# ---------------------------------------------------------------------------


def make_response(status: int, body: Any = None, headers: Dict[str, str] = None, url: str = "") -> requests.Response:
    """Build a real requests.Response with a JSON body."""
    r = requests.Response()
    r.status_code = status
    r._content = json.dumps(body).encode("utf-8") if body is not None else b""
    r.headers.update(headers or {})
    r.url = url
    return r


class FakeRedfishSession(requests.Session):
    """
    requests.Session answering from {(method, path): route}.

    A route is a dict (200 JSON body), raw bytes (200, body as is), a
    (status, body[, headers]) tuple, or an exception instance to raise.
    Unknown routes answer 404.
    """

    def __init__(self, routes: Dict[Tuple[str, str], Any] = None):
        super().__init__()
        self.routes = dict(routes or {})
        self.calls: List[Tuple[str, str]] = []
        self.request_kwargs: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        path = urlparse(url).path
        self.calls.append((method, path))
        self.request_kwargs.append(kwargs)

        route = self.routes.get((method, path))
        if route is None:
            return make_response(404, {"error": f"{path} not found"}, url=url)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, bytes):
            r = make_response(200, url=url)
            r._content = route
            return r
        if isinstance(route, tuple):
            status, body = route[0], route[1]
            headers = route[2] if len(route) > 2 else {}
            return make_response(status, body, headers, url)
        return make_response(200, route, url=url)


def _members(*paths: str) -> Dict[str, Any]:
    return {"Members": [{"@odata.id": p} for p in paths], "Members@odata.count": len(paths)}


def build_redfish_routes(bmc_ip: str = BMC_IP) -> Dict[Tuple[str, str], Any]:
    """One chassis holding System 1, a chassis-less System 2 and one BMC manager."""
    return {
        ("GET", "/redfish/v1/"): {
            "@odata.id": "/redfish/v1/",
            "Chassis": {"@odata.id": "/redfish/v1/Chassis"},
            "Systems": {"@odata.id": "/redfish/v1/Systems"},
            "Managers": {"@odata.id": "/redfish/v1/Managers"},
            "Links": {"Sessions": {"@odata.id": SESSIONS_PATH}},
        },
        ("POST", SESSIONS_PATH): (
            201, {}, {"X-Auth-Token": "token-123", "Location": SESSION_LOCATION}
        ),
        ("DELETE", SESSION_LOCATION): (204, None),

        ("GET", "/redfish/v1/Chassis"): _members("/redfish/v1/Chassis/1"),
        ("GET", "/redfish/v1/Chassis/1"): {
            "@odata.id": "/redfish/v1/Chassis/1",
            "SKU": "SKU-100",
            "SerialNumber": "CH-0001",
            "AssetTag": "rack-12",
            "Manufacturer": "Acme",
            "Model": "C1000",
            "Links": {"ComputerSystems": [{"@odata.id": "/redfish/v1/Systems/1"}]},
        },

        ("GET", "/redfish/v1/Systems"): _members("/redfish/v1/Systems/1", "/redfish/v1/Systems/2"),
        ("GET", "/redfish/v1/Systems/1"): {
            "@odata.id": "/redfish/v1/Systems/1",
            "UUID": "11111111-2222-3333-4444-555555555555",
            "Name": "node1",
            "Manufacturer": "Acme",
            "SystemType": "Physical",
            "Model": "N1",
            "SerialNumber": "SN-0001",
            "BiosVersion": "2.1.0",
            "PowerState": "On",
            "ProcessorSummary": {"Count": 2, "Model": "Acme CPU"},
            "MemorySummary": {"TotalSystemMemoryGiB": 256},
            "EthernetInterfaces": {"@odata.id": "/redfish/v1/Systems/1/EthernetInterfaces"},
        },
        ("GET", "/redfish/v1/Systems/1/EthernetInterfaces"): _members(
            "/redfish/v1/Systems/1/EthernetInterfaces/1"
        ),
        ("GET", "/redfish/v1/Systems/1/EthernetInterfaces/1"): {
            "@odata.id": "/redfish/v1/Systems/1/EthernetInterfaces/1",
            "Name": "eth0",
            "MACAddress": "aa:bb:cc:00:00:01",
            "InterfaceEnabled": True,
            "IPv4Addresses": [{"Address": "10.1.0.1"}],
        },
        ("GET", "/redfish/v1/Systems/2"): {
            "@odata.id": "/redfish/v1/Systems/2",
            "Name": "node2",
            "PowerState": "Off",
        },

        ("GET", "/redfish/v1/Managers"): _members("/redfish/v1/Managers/BMC"),
        ("GET", "/redfish/v1/Managers/BMC"): {
            "@odata.id": "/redfish/v1/Managers/BMC",
            "Name": "Manager",
            "ManagerType": "BMC",
            "FirmwareVersion": "1.2.3",
            "Manufacturer": "Acme",
            "EthernetInterfaces": {"@odata.id": "/redfish/v1/Managers/BMC/EthernetInterfaces"},
        },
        ("GET", "/redfish/v1/Managers/BMC/EthernetInterfaces"): _members(
            "/redfish/v1/Managers/BMC/EthernetInterfaces/1"
        ),
        ("GET", "/redfish/v1/Managers/BMC/EthernetInterfaces/1"): {
            "@odata.id": "/redfish/v1/Managers/BMC/EthernetInterfaces/1",
            "PermanentMACAddress": "de:ad:be:ef:00:01",
            "IPv4StaticAddresses": [{"Address": bmc_ip}],
        },
    }


@pytest.fixture
def redfish_routes() -> Dict[Tuple[str, str], Any]:
    return copy.deepcopy(build_redfish_routes())


@pytest.fixture
def fake_session(redfish_routes) -> FakeRedfishSession:
    return FakeRedfishSession(redfish_routes)


@pytest.fixture
def client_factory(redfish_routes):
    """
    Factory compatible with the crawler's client_factory argument.

    Every client gets its own FakeRedfishSession; they are collected in
    factory.sessions for assertions.
    """
    sessions: List[FakeRedfishSession] = []

    def factory(base_url, **kwargs):
        session = FakeRedfishSession(redfish_routes)
        sessions.append(session)
        return RedfishClient(base_url, session=session, **kwargs)

    factory.sessions = sessions
    return factory

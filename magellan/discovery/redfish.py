"""
Magellan - Redfish Client.

Thin requests-based client for a BMC's Redfish service.

Features:
- Service root check that tells "not a BMC" (404) apart from
  "authentication failed" (401) and transport failures
- Redfish session login (X-Auth-Token) with basic-auth fallback
- Session logout on close, also used as a context manager so every
  exit path releases the BMC session slot
- Collection helper that follows Members[@odata.id]

Usage:
    with RedfishClient("https://10.0.0.5:443", "root", "pw", insecure=True) as client:
        systems = client.get_members("/redfish/v1/Systems")
"""

import logging
from typing import Any, Dict, List, Optional

import requests
import urllib3

from ..exceptions import MagellanError

logger = logging.getLogger(__name__)

SERVICE_ROOT = "/redfish/v1/"
DEFAULT_SESSIONS_PATH = "/redfish/v1/SessionService/Sessions"


class CrawlError(MagellanError):
    """Base exception for crawl failures on one host."""
    pass


class NotABMCError(CrawlError):
    """Service root answered 404: the target is probably not a BMC."""
    pass


class AuthenticationFailed(CrawlError):
    """The BMC rejected the credentials (401)."""
    pass


class RedfishTransportError(CrawlError):
    """Connection refused, TLS failure or timeout."""
    pass


class RedfishParseError(CrawlError):
    """A resource body that is not a JSON object."""
    pass


class RedfishHTTPError(CrawlError):
    """A resource request returned a non-success status."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


# Errors confined to one resource; the rest of the host is still readable
RESOURCE_ERRORS = (RedfishHTTPError, RedfishParseError)


def member_links(collection: Dict[str, Any]) -> List[Any]:
    """Members array of a collection; null or malformed yields []."""
    members = collection.get("Members")
    return members if isinstance(members, list) else []


class RedfishClient:
    """
    Redfish HTTP client bound to one BMC.

    Args:
        base_url: scheme://host:port of the BMC.
        username: BMC username (blank allowed).
        password: BMC password.
        insecure: Skip TLS certificate verification.
        timeout: Per-request timeout in seconds.
        use_session: Try session login before falling back to basic auth.
        session: Injected requests.Session (tests, connection reuse).
    """

    def __init__(
            self,
            base_url: str,
            username: str = "",
            password: str = "",
            insecure: bool = True,
            timeout: float = 30,
            use_session: bool = True,
            session: Optional[requests.Session] = None,
    ):
        if "://" not in base_url:
            base_url = f"https://{base_url}"
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.insecure = insecure
        self.timeout = timeout
        self.use_session = use_session
        self.session = session or requests.Session()
        self.session.verify = not insecure
        self.headers: Dict[str, str] = {"Accept": "application/json"}
        self.session_location: Optional[str] = None
        self.service_root: Dict[str, Any] = {}
        self._owns_session = session is None

        if insecure:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _make_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if path.startswith("/"):
            return f"{self.base_url}{path}"
        return f"{self.base_url}/{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._make_url(path)
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}) or {})
        try:
            return self.session.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout,
                verify=not self.insecure,
                **kwargs,
            )
        except requests.Timeout as e:
            raise RedfishTransportError(f"timed out after {self.timeout}s: {url}") from e
        except requests.RequestException as e:
            raise RedfishTransportError(f"request to {url} failed: {e}") from e

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def connect(self) -> Dict[str, Any]:
        """
        Verify the service root and authenticate.

        Returns:
            Service root document.

        Raises:
            NotABMCError: Service root 404.
            AuthenticationFailed: 401 on service root or session login.
            RedfishTransportError: Network or TLS failure.
        """
        if self.username or self.password:
            self.session.auth = (self.username, self.password)

        r = self._request("GET", SERVICE_ROOT)
        if r.status_code == 404:
            raise NotABMCError(
                f"no ServiceRoot found. This is probably not a BMC: {self.base_url}"
            )
        if r.status_code == 401:
            raise AuthenticationFailed(
                f"authentication failed. Check your username and password: {self.base_url}"
            )
        if r.status_code != 200:
            raise RedfishHTTPError(
                f"{r.status_code}: unexpected service root response from {self.base_url}",
                r.status_code,
            )
        self.service_root = self._json(r)

        if self.use_session and (self.username or self.password):
            self._login()
        return self.service_root

    def _login(self) -> None:
        """Create a Redfish session; keep basic auth when that is not possible."""
        sessions_path = (
                ((self.service_root.get("Links") or {}).get("Sessions") or {}).get("@odata.id")
                or DEFAULT_SESSIONS_PATH
        )
        payload = {"UserName": self.username, "Password": self.password}
        try:
            r = self._request("POST", sessions_path, json=payload)
        except RedfishTransportError as e:
            logger.debug(f"Session login failed, using basic auth: {e}")
            return

        if r.status_code == 401:
            raise AuthenticationFailed(
                f"authentication failed. Check your username and password: {self.base_url}"
            )
        if r.status_code not in (200, 201):
            logger.debug(f"Session login returned {r.status_code}, using basic auth")
            return

        token = r.headers.get("X-Auth-Token")
        if not token:
            return
        self.headers["X-Auth-Token"] = token
        self.session.auth = None
        location = r.headers.get("Location")
        if location:
            self.session_location = location

    def logout(self) -> None:
        """Delete the Redfish session, if one was created."""
        if self.session_location:
            try:
                self._request("DELETE", self.session_location)
            except RedfishTransportError as e:
                logger.warning(f"Failed to log out of {self.base_url}: {e}")
            finally:
                self.session_location = None
                self.headers.pop("X-Auth-Token", None)

    def close(self) -> None:
        self.logout()
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> 'RedfishClient':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # Resources
    # =========================================================================

    def _json(self, r: requests.Response) -> Dict[str, Any]:
        try:
            data = r.json()
        except ValueError as e:
            raise RedfishParseError(f"invalid JSON from {r.url}") from e
        if not isinstance(data, dict):
            raise RedfishParseError(f"unexpected JSON document from {r.url}")
        return data

    def get(self, path: str) -> Dict[str, Any]:
        """
        GET a Redfish resource.

        Raises:
            AuthenticationFailed: 401.
            RedfishHTTPError: Any other non-200 status.
            RedfishTransportError: Network failure.
            RedfishParseError: Body is not a JSON object.
        """
        r = self._request("GET", path)
        if r.status_code == 401:
            raise AuthenticationFailed(
                f"authentication failed. Check your username and password: {self.base_url}"
            )
        if r.status_code != 200:
            raise RedfishHTTPError(f"{r.status_code}: GET {path}", r.status_code)
        return self._json(r)

    def get_members(self, collection_path: str) -> List[Dict[str, Any]]:
        """
        Fetch every member of a collection.

        A member that answers with an HTTP error or an unparsable body is
        logged and skipped; transport failures propagate.
        """
        collection = self.get(collection_path)
        members = []
        for link in member_links(collection):
            member_path = link.get("@odata.id") if isinstance(link, dict) else None
            if not member_path:
                continue
            try:
                members.append(self.get(member_path))
            except RESOURCE_ERRORS as e:
                logger.warning(f"Skipping {member_path} on {self.base_url}: {e}")
        return members

    def link_path(self, resource: Dict[str, Any], name: str) -> Optional[str]:
        """Return the @odata.id of a navigation property (e.g. EthernetInterfaces)."""
        link = resource.get(name)
        if isinstance(link, dict):
            return link.get("@odata.id")
        return None

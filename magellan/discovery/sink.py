"""
Magellan - Inventory Sink.

HTTP client for the inventory service (SMD) RedfishEndpoints API.

    add()    POST {uri}/hsm/v2/Inventory/RedfishEndpoints
    update() PUT  {uri}/hsm/v2/Inventory/RedfishEndpoints/{xname}

Any non-2xx response raises SinkError carrying "<status>: <body>".

load_records() and send_records() push saved collect output (a flat
file or hive file) to the service.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from ..exceptions import MagellanError
from .formats import DataFormat, data_format_from_file_ext, marshal, unmarshal

logger = logging.getLogger(__name__)

ENDPOINTS_PATH = "/hsm/v2/Inventory/RedfishEndpoints"


class SinkError(MagellanError):
    """The inventory service rejected a request or could not be reached."""
    pass


def build_headers(access_token: str = "", content_type: str = "application/json") -> Dict[str, str]:
    """Request headers: bearer token (when set) and content type."""
    headers = {"Content-Type": content_type}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return headers


class SmdClient:
    """
    Inventory service client.

    Args:
        uri: Base URI of the service (https://smd.example.com).
        timeout: Request timeout in seconds.
        ca_cert: CA bundle path used to verify the service certificate.
        session: Injected requests.Session.
    """

    def __init__(
            self,
            uri: str,
            timeout: float = 30,
            ca_cert: str = "",
            session: Optional[requests.Session] = None,
    ):
        self.uri = uri.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if ca_cert:
            self.session.verify = ca_cert

    def _send(self, method: str, url: str, body: Union[str, bytes], headers: Dict[str, str]) -> requests.Response:
        if isinstance(body, str):
            body = body.encode("utf-8")
        try:
            r = self.session.request(method, url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise SinkError(f"{method} {url} failed: {e}") from e
        if not 200 <= r.status_code < 300:
            raise SinkError(f"{r.status_code}: {r.text}")
        return r

    def add(self, body: Union[str, bytes], headers: Dict[str, str]) -> requests.Response:
        """Create a RedfishEndpoint."""
        return self._send("POST", f"{self.uri}{ENDPOINTS_PATH}", body, headers)

    def update(self, xname: str, body: Union[str, bytes], headers: Dict[str, str]) -> requests.Response:
        """Replace the RedfishEndpoint for xname."""
        return self._send("PUT", f"{self.uri}{ENDPOINTS_PATH}/{xname}", body, headers)

    def add_or_update(
            self,
            xname: str,
            body: Union[str, bytes],
            headers: Dict[str, str],
            force_update: bool = False,
    ) -> None:
        """
        POST the endpoint; on failure PUT it when force_update is set.

        Raises:
            SinkError: Add failed (and no update attempted), or update failed.
        """
        try:
            self.add(body, headers)
        except SinkError as e:
            if not force_update:
                raise
            logger.debug(f"Add of {xname} failed ({e}), forcing update")
            self.update(xname, body, headers)


# =========================================================================
# Sending saved collect output
# =========================================================================

def load_records(source: str, default_format: DataFormat = DataFormat.JSON) -> List[Dict[str, Any]]:
    """
    Load RedfishEndpoint records from '@path' or inline text.

    A file's format comes from its extension, falling back to
    default_format. The content may be one record or a list of them.

    Raises:
        ValueError: Unreadable file, unparsable content, or not records.
    """
    if source.startswith("@"):
        path = Path(source[1:])
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"failed to read {path}: {e}") from e
        fmt = data_format_from_file_ext(path, default_format)
    else:
        text = source
        fmt = default_format

    if not text.strip():
        logger.warning(f"No data in {source[:40]}")
        return []

    data = unmarshal(text, fmt)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise ValueError("expected a record or a list of records")
    return data


def send_records(
        sink: SmdClient,
        records: List[Dict[str, Any]],
        headers: Dict[str, str],
        force_update: bool = False,
) -> Tuple[int, int]:
    """
    Add (or force-update) each record on the inventory service.

    Returns:
        (sent, failed) counts. A record without an ID counts as failed.
    """
    sent = failed = 0
    for record in records:
        xname = record.get("ID") or ""
        if not xname:
            logger.error("Record has no ID, not sent")
            failed += 1
            continue
        try:
            sink.add_or_update(xname, marshal(record, DataFormat.JSON), headers, force_update)
        except SinkError as e:
            verb = "forcibly update" if force_update else "add"
            logger.error(f"Failed to {verb} Redfish endpoint {xname}: {e}")
            failed += 1
            continue
        sent += 1
    return sent, failed

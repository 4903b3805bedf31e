"""
Equinix Metal API client.

Implements the capacity, device and event services over the REST API.
No caching and no retries: every call hits the API and failures are loud.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.errors import NotFoundError, TransportError
from .models import (
    CapacityLevel,
    CapacityReport,
    Device,
    DeviceCreateRequest,
    Event,
)

DEFAULT_API_URL = "https://api.equinix.com/metal/v1"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEVICE_PAGE_SIZE = 100

logger = logging.getLogger(__name__)


class MetalClient:
    """Thin adapter between the provider REST API and the local models.

    All transport failures surface as TransportError; a 404 on a single
    device lookup surfaces as NotFoundError.
    """

    def __init__(
        self,
        auth_token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            auth_token: Equinix Metal API token (required)
            api_url: Base URL of the API
            timeout: Per-request timeout in seconds
            session: Optional preconfigured session

        Raises:
            ValueError: If auth_token is missing/empty
        """
        if not auth_token or not auth_token.strip():
            raise ValueError("auth_token is required and cannot be empty")

        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Auth-Token": auth_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def list_capacity(self) -> CapacityReport:
        """Fetch the per-metro capacity snapshot."""
        body = self._request("GET", "/capacity/metros")
        report: CapacityReport = {}
        for metro, plans in (body.get("capacity") or {}).items():
            report[metro] = {
                plan: CapacityLevel.from_provider((info or {}).get("level"))
                for plan, info in (plans or {}).items()
            }
        return report

    def list_devices(self, project_id: str) -> List[Device]:
        """List every device in a project, following pagination."""
        devices: List[Device] = []
        page = 1
        while True:
            body = self._request(
                "GET",
                f"/projects/{project_id}/devices",
                params={"page": page, "per_page": DEVICE_PAGE_SIZE},
            )
            devices.extend(Device.from_api(d) for d in body.get("devices") or [])

            last_page = (body.get("meta") or {}).get("last_page") or page
            if page >= last_page:
                return devices
            page += 1

    def create_device(self, request: DeviceCreateRequest) -> Device:
        body = self._request(
            "POST",
            f"/projects/{request.project_id}/devices",
            json=request.to_payload(),
        )
        return Device.from_api(body)

    def get_device(self, device_id: str) -> Device:
        """Fetch a single device snapshot.

        Raises:
            NotFoundError: If the device does not exist
            TransportError: On any other API failure
        """
        try:
            body = self._request("GET", f"/devices/{device_id}")
        except TransportError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Device {device_id} not found") from e
            raise
        return Device.from_api(body)

    def delete_device(self, device_id: str) -> None:
        self._request(
            "DELETE",
            f"/devices/{device_id}",
            params={"force_delete": "false"},
        )

    def list_events(self, project_id: str, page: int, per_page: int) -> List[Event]:
        """Fetch one page of project events, most recent first.

        Entries that cannot be read are returned as malformed events
        rather than failing the whole page.
        """
        body = self._request(
            "GET",
            f"/projects/{project_id}/events",
            params={"page": page, "per_page": per_page},
        )
        return [Event.from_api(e) for e in body.get("events") or []]

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Issue a request and return the decoded JSON body.

        Raises:
            TransportError: On network errors, non-2xx responses or invalid JSON
        """
        url = f"{self.api_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            raise TransportError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(
                f"{method} {path} returned invalid JSON", status_code=resp.status_code
            ) from e

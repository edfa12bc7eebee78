"""Client for the hosting control-plane (Pterodactyl panel API).

Two modes are supported:

- ``splitter``: every bot is a sub-server carved out of one parent server
  through the client API. Suspend and unsuspend are power stop/start.
- ``application``: every bot is a standalone server managed through the
  application API.

Utilization is always read through the client API.
"""

import logging
from dataclasses import dataclass

import httpx

from autoscaler.errors import (
    HostingAuthError,
    HostingError,
    PermanentHostingError,
    ServerNotFoundError,
    TransientHostingError,
)
from autoscaler.scaling.tiers import TierLimits

logger = logging.getLogger(__name__)

SPLITTER_MODE = "splitter"
APPLICATION_MODE = "application"


@dataclass
class ServerUtilization:
    """Live usage reported by the control-plane for one server."""

    memory_bytes: int = 0
    cpu_absolute: float = 0.0
    disk_bytes: int = 0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    suspended: bool = False
    state: str | None = None

    def as_dict(self) -> dict:
        return {
            "memory_bytes": self.memory_bytes,
            "cpu_absolute": self.cpu_absolute,
            "disk_bytes": self.disk_bytes,
            "network_rx_bytes": self.network_rx_bytes,
            "network_tx_bytes": self.network_tx_bytes,
            "suspended": self.suspended,
            "state": self.state,
        }


@dataclass
class ServerHandle:
    """Identifiers of a freshly created server."""

    id: str
    identifier: str
    uuid: str
    name: str | None = None

    @property
    def server_id(self) -> str:
        """Handle stored on the deployment."""
        return self.uuid or self.identifier or self.id


def classify_status(status_code: int, message: str) -> HostingError:
    """Map an HTTP error status to the error taxonomy."""
    if status_code == 404:
        return ServerNotFoundError(message, status_code)
    if status_code in (401, 403):
        return HostingAuthError(message, status_code)
    if status_code == 429 or status_code >= 500:
        return TransientHostingError(message, status_code)
    return PermanentHostingError(message, status_code)


def _attributes(payload: dict) -> dict:
    """Unwrap ``{attributes}`` or ``{data: {attributes}}`` envelopes."""
    if not isinstance(payload, dict):
        return {}
    if "data" in payload and isinstance(payload["data"], dict):
        payload = payload["data"]
    return payload.get("attributes", payload)


class HostingClient:
    """Thin synchronous wrapper over the panel HTTP API.

    Every failure surfaces as a HostingError subclass; retrying is left to
    the caller's RetryPolicy.
    """

    def __init__(
        self,
        panel_url: str,
        api_key: str,
        api_mode: str = SPLITTER_MODE,
        parent_server_uuid: str = "",
        egg_id: int = 15,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            panel_url: Base URL of the panel
            api_key: Bearer API key
            api_mode: ``splitter`` or ``application``
            parent_server_uuid: Parent server for splitter mode
            egg_id: Egg used when creating or resizing bot servers
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        if api_mode not in (SPLITTER_MODE, APPLICATION_MODE):
            raise ValueError(f"unknown hosting api mode: {api_mode}")
        if not panel_url or not api_key:
            logger.warning("Hosting panel credentials are not configured")

        self.api_mode = api_mode
        self.parent_server_uuid = parent_server_uuid
        self.egg_id = egg_id
        self._http = httpx.Client(
            base_url=panel_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self._http.close()

    def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            response = self._http.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise TransientHostingError(f"{method} {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientHostingError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            message = f"{method} {path} -> {response.status_code}: {response.text[:200]}"
            error = classify_status(response.status_code, message)
            log = logger.warning if error.transient else logger.error
            log("Hosting API error: %s", message)
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _splitter_path(self, server_id: str | None = None) -> str:
        if not self.parent_server_uuid:
            raise PermanentHostingError("parent server uuid is required in splitter mode")
        path = f"/api/client/servers/{self.parent_server_uuid}/splitter"
        return f"{path}/{server_id}" if server_id else path

    def _splitter_body(self, name: str, limits: TierLimits) -> dict:
        return {
            "name": name,
            "cpu": limits.cpu_percent,
            "memory": limits.memory_mb,
            "disk": limits.disk_mb,
            "egg_id": self.egg_id,
            "copy_subusers": False,
            "localhost_networking": False,
        }

    def get_utilization(self, server_id: str) -> ServerUtilization:
        """Fetch live resource usage for a server."""
        attrs = _attributes(self._request("GET", f"/api/client/servers/{server_id}/resources"))
        resources = attrs.get("resources") or {}
        return ServerUtilization(
            memory_bytes=resources.get("memory_bytes") or 0,
            cpu_absolute=resources.get("cpu_absolute") or 0.0,
            disk_bytes=resources.get("disk_bytes") or 0,
            network_rx_bytes=resources.get("network_rx_bytes") or 0,
            network_tx_bytes=resources.get("network_tx_bytes") or 0,
            suspended=bool(attrs.get("is_suspended", False)),
            state=attrs.get("current_state"),
        )

    def resize(self, server_id: str, limits: TierLimits, name: str | None = None) -> None:
        """Apply new resource limits to an existing server."""
        if self.api_mode == SPLITTER_MODE:
            body = self._splitter_body(name or f"bot_{server_id[:8]}", limits)
            self._request("POST", self._splitter_path(server_id), json=body)
        else:
            self._request(
                "PATCH",
                f"/api/application/servers/{server_id}/build",
                json={
                    "limits": {
                        "memory": limits.memory_mb,
                        "swap": limits.swap_mb,
                        "disk": limits.disk_mb,
                        "io": limits.io_weight,
                        "cpu": limits.cpu_percent,
                    },
                    "feature_limits": {
                        "databases": 0,
                        "allocations": 1,
                        "backups": limits.backups,
                    },
                },
            )
        logger.info("Resized server %s to %dMB/%d%%/%dMB",
                    server_id, limits.memory_mb, limits.cpu_percent, limits.disk_mb)

    def suspend(self, server_id: str) -> None:
        if self.api_mode == SPLITTER_MODE:
            self._request("POST", f"/api/client/servers/{server_id}/power", json={"signal": "stop"})
        else:
            self._request("POST", f"/api/application/servers/{server_id}/suspend")
        logger.info("Suspended server %s", server_id)

    def unsuspend(self, server_id: str) -> None:
        if self.api_mode == SPLITTER_MODE:
            self._request("POST", f"/api/client/servers/{server_id}/power", json={"signal": "start"})
        else:
            self._request("POST", f"/api/application/servers/{server_id}/unsuspend")
        logger.info("Unsuspended server %s", server_id)

    def delete(self, server_id: str) -> None:
        """Delete a server. A server that no longer exists counts as deleted."""
        path = (
            self._splitter_path(server_id)
            if self.api_mode == SPLITTER_MODE
            else f"/api/application/servers/{server_id}"
        )
        try:
            self._request("DELETE", path)
        except ServerNotFoundError:
            logger.info("Server %s already deleted", server_id)
            return
        logger.info("Deleted server %s", server_id)

    def create_server(self, name: str, limits: TierLimits, environment: dict | None = None) -> ServerHandle:
        """Create a bot server sized to ``limits``."""
        if self.api_mode == SPLITTER_MODE:
            payload = self._request("POST", self._splitter_path(), json=self._splitter_body(name, limits))
        else:
            payload = self._request(
                "POST",
                "/api/application/servers",
                json={
                    "name": name,
                    "egg": self.egg_id,
                    "environment": {"NODE_ENV": "production", **(environment or {})},
                    "limits": {
                        "memory": limits.memory_mb,
                        "swap": limits.swap_mb,
                        "disk": limits.disk_mb,
                        "io": limits.io_weight,
                        "cpu": limits.cpu_percent,
                    },
                    "feature_limits": {"databases": 0, "allocations": 1, "backups": limits.backups},
                },
            )
        attrs = _attributes(payload)
        if not attrs.get("uuid") and not attrs.get("identifier"):
            raise PermanentHostingError(f"create server returned no identifier for {name}")
        handle = ServerHandle(
            id=str(attrs.get("id", "")),
            identifier=attrs.get("identifier", ""),
            uuid=attrs.get("uuid", ""),
            name=attrs.get("name", name),
        )
        logger.info("Created server %s (%s)", handle.identifier, name)
        return handle

    def list_servers(self) -> list[dict]:
        """List bot servers known to the control-plane."""
        if self.api_mode == SPLITTER_MODE:
            payload = self._request("GET", self._splitter_path())
        else:
            payload = self._request("GET", "/api/application/servers")
        return [_attributes(item) for item in payload.get("data", [])]

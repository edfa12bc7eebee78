"""Pytest configuration and shared fixtures."""

import json
from datetime import timedelta

import httpx
import pytest

from autoscaler.db.models import ACTIVE, utcnow
from autoscaler.db.service import DeploymentStore
from autoscaler.hosting.client import HostingClient
from autoscaler.hosting.retry import RetryPolicy
from autoscaler.scaling.tiers import DEFAULT_TIER_TABLE

PANEL_URL = "https://panel.test"
PARENT_UUID = "parent-uuid"
MB = 1024 * 1024


class FakePanel:
    """In-memory hosting panel served through httpx.MockTransport.

    Failures are matched on URL path segments, so failing ``srv-1`` affects
    every call that names that server.
    """

    def __init__(self):
        self.usage: dict[str, dict] = {}
        self.failures: dict[str, list] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.created = 0

    def set_usage(self, server_id, memory_mb=0.0, cpu=0.0, disk_mb=0.0, state="running", suspended=False):
        self.usage[server_id] = {
            "current_state": state,
            "is_suspended": suspended,
            "resources": {
                "memory_bytes": int(memory_mb * MB),
                "cpu_absolute": cpu,
                "disk_bytes": int(disk_mb * MB),
                "network_rx_bytes": 0,
                "network_tx_bytes": 0,
            },
        }

    def fail(self, segment, status_code, times=None):
        """Answer calls naming ``segment`` with ``status_code``; forever if times is None."""
        self.failures[segment] = [status_code, times]

    def calls(self, method=None, contains=None):
        return [
            (m, path, body) for m, path, body in self.requests
            if (method is None or m == method) and (contains is None or contains in path)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        segments = path.split("/")
        for segment, failure in list(self.failures.items()):
            if segment in segments:
                status_code, times = failure
                if times is not None:
                    if times <= 1:
                        del self.failures[segment]
                    else:
                        failure[1] = times - 1
                return httpx.Response(status_code, json={"errors": [{"code": "Fake", "status": str(status_code)}]})

        if request.method == "GET" and path.endswith("/resources"):
            server_id = segments[4]
            if server_id not in self.usage:
                return httpx.Response(404, json={"errors": [{"code": "NotFound"}]})
            return httpx.Response(200, json={"object": "stats", "attributes": self.usage[server_id]})

        if request.method == "POST" and path in (f"/api/client/servers/{PARENT_UUID}/splitter", "/api/application/servers"):
            self.created += 1
            server_id = f"new-{self.created}"
            self.set_usage(server_id)
            return httpx.Response(201, json={"attributes": {
                "id": self.created,
                "identifier": server_id[:8],
                "uuid": server_id,
                "name": body.get("name") if body else None,
            }})

        if request.method == "GET" and path == f"/api/client/servers/{PARENT_UUID}/splitter":
            return httpx.Response(200, json={"data": [
                {"attributes": {"uuid": server_id}} for server_id in self.usage
            ]})

        return httpx.Response(204)


@pytest.fixture
def panel():
    """Create fake hosting panel."""
    return FakePanel()


@pytest.fixture
def hosting_client(panel):
    """Create hosting client bound to the fake panel."""
    client = HostingClient(
        PANEL_URL,
        "test-key",
        parent_server_uuid=PARENT_UUID,
        transport=httpx.MockTransport(panel.handler),
    )
    yield client
    client.close()


@pytest.fixture
def retry_policy():
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def store(tmp_path):
    """Create test deployment store."""
    return DeploymentStore(f"sqlite:///{tmp_path}/test.db")


@pytest.fixture
def make_deployment(store, panel):
    """Factory for active deployments with a server on the fake panel."""
    counter = {"n": 0}

    def _make(tier="starter", purchased_tier=None, status=ACTIVE, server_id=None, **fields):
        counter["n"] += 1
        server_id = server_id or f"srv-{counter['n']}"
        if server_id not in panel.usage:
            panel.set_usage(server_id)
        return store.create_deployment(
            order_ref=fields.pop("order_ref", f"order-{counter['n']:04d}"),
            customer_id=fields.pop("customer_id", "customer-1"),
            guild_id=fields.pop("guild_id", "guild-1"),
            server_id=server_id,
            name=f"bot_{counter['n']}",
            tier=tier,
            purchased_tier=purchased_tier or tier,
            status=status,
            **DEFAULT_TIER_TABLE.limits(tier).resources(),
            **fields,
        )

    return _make


@pytest.fixture
def add_samples(store):
    """Factory that stores samples oldest first, one minute apart, ending a minute ago."""

    def _add(deployment_id, values):
        now = utcnow()
        for i, (memory, cpu, disk) in enumerate(values):
            store.add_sample(
                deployment_id=deployment_id,
                sampled_at=now - timedelta(minutes=len(values) - i),
                memory_pct=memory,
                cpu_pct=cpu,
                disk_pct=disk,
            )

    return _add

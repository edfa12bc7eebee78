"""Tests for the hosting client and retry policy."""

import httpx
import pytest

from autoscaler.errors import (
    HostingAuthError,
    PermanentHostingError,
    ServerNotFoundError,
    TransientHostingError,
)
from autoscaler.hosting.client import APPLICATION_MODE, HostingClient, classify_status
from autoscaler.hosting.retry import RetryPolicy
from autoscaler.scaling.tiers import DEFAULT_TIER_TABLE

MB = 1024 * 1024
PANEL_URL = "https://panel.test"
PARENT_UUID = "parent-uuid"


class TestClassifyStatus:
    """Tests for error classification."""

    @pytest.mark.parametrize("status_code,error_type", [
        (404, ServerNotFoundError),
        (401, HostingAuthError),
        (403, HostingAuthError),
        (422, PermanentHostingError),
        (429, TransientHostingError),
        (500, TransientHostingError),
        (503, TransientHostingError),
    ])
    def test_classification(self, status_code, error_type):
        error = classify_status(status_code, "boom")

        assert type(error) is error_type
        assert error.status_code == status_code

    def test_transient_flag(self):
        assert classify_status(502, "x").transient
        assert not classify_status(404, "x").transient


class TestHostingClient:
    """Tests for HostingClient against the fake panel."""

    def test_get_utilization(self, hosting_client, panel):
        panel.set_usage("srv-1", memory_mb=256, cpu=12.5, disk_mb=100, state="running")

        usage = hosting_client.get_utilization("srv-1")

        assert usage.memory_bytes == 256 * MB
        assert usage.cpu_absolute == 12.5
        assert usage.disk_bytes == 100 * MB
        assert usage.state == "running"
        assert not usage.suspended

    def test_get_utilization_data_envelope(self, panel):
        def handler(request):
            return httpx.Response(200, json={"data": {"attributes": {
                "current_state": "offline",
                "is_suspended": True,
                "resources": {"memory_bytes": 10, "cpu_absolute": 1.0, "disk_bytes": 20},
            }}})

        client = HostingClient(PANEL_URL, "key", parent_server_uuid=PARENT_UUID,
                               transport=httpx.MockTransport(handler))

        usage = client.get_utilization("srv-1")

        assert usage.memory_bytes == 10
        assert usage.suspended
        assert usage.state == "offline"

    def test_splitter_resize(self, hosting_client, panel):
        hosting_client.resize("srv-1", DEFAULT_TIER_TABLE.limits("pro"), name="bot_abc")

        method, path, body = panel.requests[-1]
        assert method == "POST"
        assert path == f"/api/client/servers/{PARENT_UUID}/splitter/srv-1"
        assert body["memory"] == 1024
        assert body["cpu"] == 50
        assert body["disk"] == 4096
        assert body["name"] == "bot_abc"

    def test_application_resize(self, panel):
        client = HostingClient(PANEL_URL, "key", api_mode=APPLICATION_MODE,
                               transport=httpx.MockTransport(panel.handler))

        client.resize("42", DEFAULT_TIER_TABLE.limits("business"))

        method, path, body = panel.requests[-1]
        assert method == "PATCH"
        assert path == "/api/application/servers/42/build"
        assert body["limits"]["memory"] == 2048
        assert body["feature_limits"]["backups"] == 3

    def test_splitter_suspend_is_power_stop(self, hosting_client, panel):
        hosting_client.suspend("srv-1")
        hosting_client.unsuspend("srv-1")

        assert panel.requests[0] == ("POST", "/api/client/servers/srv-1/power", {"signal": "stop"})
        assert panel.requests[1] == ("POST", "/api/client/servers/srv-1/power", {"signal": "start"})

    def test_delete_missing_server_is_success(self, hosting_client, panel):
        panel.fail("srv-9", 404)

        hosting_client.delete("srv-9")

        assert panel.calls("DELETE")

    def test_create_server(self, hosting_client, panel):
        handle = hosting_client.create_server("bot_order_guild", DEFAULT_TIER_TABLE.limits("starter"))

        assert handle.server_id == "new-1"
        assert panel.created == 1
        assert panel.requests[-1][2]["memory"] == 512

    def test_create_server_without_identifier(self):
        client = HostingClient(PANEL_URL, "key", parent_server_uuid=PARENT_UUID,
                               transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))

        with pytest.raises(PermanentHostingError, match="no identifier"):
            client.create_server("bot", DEFAULT_TIER_TABLE.limits("starter"))

    def test_splitter_requires_parent(self, panel):
        client = HostingClient(PANEL_URL, "key", transport=httpx.MockTransport(panel.handler))

        with pytest.raises(PermanentHostingError, match="parent server"):
            client.list_servers()

    def test_list_servers(self, hosting_client, panel):
        panel.set_usage("srv-1")
        panel.set_usage("srv-2")

        servers = hosting_client.list_servers()

        assert [s["uuid"] for s in servers] == ["srv-1", "srv-2"]

    def test_error_statuses_raise(self, hosting_client, panel):
        panel.fail("srv-1", 503)
        with pytest.raises(TransientHostingError):
            hosting_client.get_utilization("srv-1")

        panel.fail("srv-1", 401)
        with pytest.raises(HostingAuthError):
            hosting_client.get_utilization("srv-1")

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = HostingClient(PANEL_URL, "key", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientHostingError, match="timed out"):
            client.get_utilization("srv-1")

    def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = HostingClient(PANEL_URL, "key", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientHostingError):
            client.suspend("srv-1")

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="unknown hosting api mode"):
            HostingClient(PANEL_URL, "key", api_mode="ftp")


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_transient_errors_retried(self, hosting_client, panel, retry_policy):
        panel.set_usage("srv-1", memory_mb=100)
        panel.fail("srv-1", 503, times=2)

        usage = retry_policy.call(hosting_client.get_utilization, "srv-1")

        assert usage.memory_bytes == 100 * MB
        assert len(panel.requests) == 3

    def test_gives_up_after_max_attempts(self, hosting_client, panel, retry_policy):
        panel.fail("srv-1", 500)

        with pytest.raises(TransientHostingError):
            retry_policy.call(hosting_client.get_utilization, "srv-1")

        assert len(panel.requests) == 3

    def test_permanent_errors_not_retried(self, hosting_client, panel, retry_policy):
        panel.fail("srv-1", 404)

        with pytest.raises(ServerNotFoundError):
            retry_policy.call(hosting_client.get_utilization, "srv-1")

        assert len(panel.requests) == 1

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

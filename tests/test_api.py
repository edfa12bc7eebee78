"""Unit tests for the FastAPI application."""

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from autoscaler.api.main import app, get_controller
from autoscaler.controller import build_controller
from autoscaler.db.models import utcnow
from autoscaler.settings import Settings

CRON = {"Authorization": "Bearer cron-secret"}
ADMIN = {"Authorization": "Bearer api-token"}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path}/api.db",
        hosting_panel_url="https://panel.test",
        hosting_api_key="test-key",
        hosting_parent_server_uuid="parent-uuid",
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        cron_secret="cron-secret",
        api_token="api-token",
    )


@pytest.fixture
def controller(settings, panel):
    controller = build_controller(settings, transport=httpx.MockTransport(panel.handler))
    yield controller
    controller.close()


@pytest.fixture
def client(controller):
    """Create test client bound to the test controller."""
    app.dependency_overrides[get_controller] = lambda: controller
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def deployment(client):
    response = client.post(
        "/admin/deployments",
        headers=ADMIN,
        json={"order_ref": "order-abc", "customer_id": "cust-1", "guild_id": "guild-1", "tier": "starter"},
    )
    assert response.status_code == 201
    return response.json()


class TestRootEndpoints:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Bot Auto-Scaler API"
        assert "endpoints" in data

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCronEndpoint:
    """Tests for the pass trigger."""

    def test_requires_secret(self, client):
        assert client.post("/cron/auto-scale").status_code == 401
        assert client.post("/cron/auto-scale", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_unconfigured_secret(self, client, controller):
        controller.settings.cron_secret = ""

        assert client.post("/cron/auto-scale", headers=CRON).status_code == 503

    def test_runs_pass(self, client, controller, panel, deployment):
        panel.set_usage(deployment["server_id"], memory_mb=100)

        response = client.post("/cron/auto-scale", headers=CRON)

        assert response.status_code == 200
        data = response.json()
        assert data["checked"] == 1
        assert data["errors"] == 0
        assert data["details"][0]["deployment_id"] == deployment["id"]
        assert data["details"][0]["scaled"] is False
        assert data["details"][0]["decision_reason"] == "within bounds"

    def test_get_also_triggers(self, client):
        response = client.get("/cron/auto-scale", headers=CRON)

        assert response.status_code == 200
        assert response.json()["checked"] == 0

    def test_scales_up_after_sustained_load(self, client, controller, panel, deployment):
        now = utcnow()
        for minutes in (2, 1):
            controller.store.add_sample(
                deployment_id=deployment["id"], sampled_at=now - timedelta(minutes=minutes),
                memory_pct=95.0, cpu_pct=10.0, disk_pct=10.0,
            )
        panel.set_usage(deployment["server_id"], memory_mb=500)

        data = client.post("/cron/auto-scale", headers=CRON).json()

        assert data["scaled_up"] == 1
        assert controller.store.get_deployment(deployment["id"]).tier == "pro"


class TestAdminEndpoints:
    """Tests for admin operations."""

    def test_requires_token(self, client):
        assert client.get("/admin/deployments").status_code == 401

    def test_provision_is_idempotent(self, client, deployment, panel):
        response = client.post(
            "/admin/deployments",
            headers=ADMIN,
            json={"order_ref": "order-abc", "customer_id": "cust-1", "guild_id": "guild-1"},
        )

        assert response.json()["id"] == deployment["id"]
        assert panel.created == 1

    def test_provision_after_failed_attempt(self, client, panel):
        body = {"order_ref": "order-retry", "customer_id": "cust-1", "guild_id": "guild-1"}
        panel.fail("parent-uuid", 503, times=3)

        assert client.post("/admin/deployments", headers=ADMIN, json=body).status_code == 503
        response = client.post("/admin/deployments", headers=ADMIN, json=body)

        assert response.status_code == 201
        assert response.json()["status"] == "active"
        assert response.json()["server_id"] == "new-1"

    def test_provision_validation(self, client):
        response = client.post(
            "/admin/deployments",
            headers=ADMIN,
            json={"order_ref": "order-x", "customer_id": "c", "guild_id": "g", "tier": "enterprise"},
        )

        assert response.status_code == 422

    def test_list_and_get(self, client, deployment):
        listed = client.get("/admin/deployments?status=active", headers=ADMIN).json()
        single = client.get(f"/admin/deployments/{deployment['id']}", headers=ADMIN)

        assert listed["count"] == 1
        assert single.status_code == 200
        assert single.json()["tier"] == "starter"

    def test_missing_deployment(self, client):
        assert client.get("/admin/deployments/nope", headers=ADMIN).status_code == 404

    def test_suspend_unsuspend_terminate(self, client, deployment):
        base = f"/admin/deployments/{deployment['id']}"

        assert client.post(f"{base}/suspend", headers=ADMIN, json={"reason": "abuse"}).json()["status"] == "suspended"
        assert client.post(f"{base}/unsuspend", headers=ADMIN).json()["status"] == "active"
        assert client.post(f"{base}/terminate", headers=ADMIN).json()["status"] == "terminated"
        assert client.post(f"{base}/suspend", headers=ADMIN).status_code == 409

        logs = client.get(f"{base}/logs", headers=ADMIN).json()["logs"]
        assert [entry["action"] for entry in logs][:3] == ["terminate", "unsuspend", "suspend"]

    def test_manual_resize(self, client, deployment):
        base = f"/admin/deployments/{deployment['id']}"

        response = client.post(f"{base}/resources", headers=ADMIN, json={"tier": "business"})

        assert response.status_code == 200
        data = response.json()
        assert data["event"]["outcome"] == "applied"
        assert data["event"]["triggered_by"] == "admin"
        assert data["deployment"]["resource_limits"] == {"memory_mb": 2048, "cpu_percent": 100, "disk_mb": 8192}
        events = client.get(f"{base}/events", headers=ADMIN).json()["events"]
        assert len(events) == 1

    def test_resize_in_progress(self, client, controller, deployment):
        controller.store.acquire_lock(deployment["id"], "other", "terminate")

        response = client.post(f"/admin/deployments/{deployment['id']}/resources", headers=ADMIN, json={"tier": "pro"})

        assert response.status_code == 409

    def test_resize_hosting_errors(self, client, panel, deployment):
        url = f"/admin/deployments/{deployment['id']}/resources"

        panel.fail("parent-uuid", 403)
        assert client.post(url, headers=ADMIN, json={"tier": "pro"}).status_code == 502

        panel.fail("parent-uuid", 503)
        assert client.post(url, headers=ADMIN, json={"tier": "pro"}).status_code == 503

    def test_acknowledge(self, client, controller, deployment):
        controller.store.flag_for_attention(deployment["id"], "server not found")

        response = client.post(f"/admin/deployments/{deployment['id']}/acknowledge", headers=ADMIN)

        assert response.json()["attention_required"] is False

    def test_statistics(self, client, deployment):
        data = client.get("/admin/statistics", headers=ADMIN).json()

        assert data["deployments_by_status"] == {"active": 1}


class TestStatusEndpoint:
    """Tests for the customer status read."""

    def test_status_recommends_upgrade(self, client, panel, deployment):
        panel.set_usage(deployment["server_id"], memory_mb=450)

        response = client.get(f"/deployments/{deployment['id']}/status", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert data["utilization"]["memory_pct"] == pytest.approx(450 / 512 * 100)
        assert data["upgrade_recommended"] is True
        assert data["suggested_tier"] == "pro"

    def test_status_without_pressure(self, client, panel, deployment):
        panel.set_usage(deployment["server_id"], memory_mb=100)

        data = client.get(f"/deployments/{deployment['id']}/status", headers=ADMIN).json()

        assert data["upgrade_recommended"] is False
        assert data["suggested_tier"] is None

    def test_status_when_panel_unreachable(self, client, panel, deployment):
        panel.fail(deployment["server_id"], 503)

        data = client.get(f"/deployments/{deployment['id']}/status", headers=ADMIN).json()

        assert data["utilization"] is None
        assert data["upgrade_recommended"] is False
        assert data["status"] == "active"

    def test_status_does_not_record_samples(self, client, controller, panel, deployment):
        client.get(f"/deployments/{deployment['id']}/status", headers=ADMIN)

        assert controller.store.recent_samples(deployment["id"], limit=5) == []

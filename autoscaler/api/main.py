"""FastAPI application for the bot deployment auto-scaler."""

import hmac
import logging
from datetime import datetime
from threading import Lock
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from autoscaler import __version__
from autoscaler.controller import Controller, build_controller
from autoscaler.db.models import PROVISIONING, TERMINATED
from autoscaler.errors import (
    DeploymentNotFoundError,
    HostingError,
    InvalidTierError,
    InvalidTransitionError,
    OperationInProgressError,
)
from autoscaler.scaling.tiers import Tier
from autoscaler.scaling.utilization import calculate_utilization, upgrade_recommended
from autoscaler.settings import get_settings

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500

app = FastAPI(
    title="Bot Auto-Scaler API",
    description="Resource monitoring, tier auto-scaling and lifecycle operations for hosted bots",
    version=__version__,
)


class ProvisionRequest(BaseModel):
    """Request body for provisioning a deployment."""

    order_ref: str = Field(..., min_length=1, max_length=64, description="Order the bot was purchased with")
    customer_id: str = Field(..., min_length=1, max_length=64, description="Customer (Discord) id")
    guild_id: str = Field(..., min_length=1, max_length=64, description="Discord guild the bot serves")
    tier: Tier = Field(default=Tier.STARTER, description="Purchased tier")


class ResizeRequest(BaseModel):
    """Request body for a manual resize."""

    tier: Tier
    reason: str = Field(default="manual resize", max_length=500)


class SuspendRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class StatusResponse(BaseModel):
    """Customer-facing deployment status."""

    deployment_id: str
    status: str
    health_status: str
    tier: str
    resource_limits: dict
    utilization: dict | None = None
    upgrade_recommended: bool
    suggested_tier: str | None = None
    timestamp: datetime


# Lazily built controller shared by all requests
_state_lock = Lock()
_controller: Controller | None = None


def get_controller() -> Controller:
    """Return the process-wide controller, building it on first use."""
    global _controller
    with _state_lock:
        if _controller is None:
            _controller = build_controller(get_settings())
        return _controller


def _check_bearer(authorization: str | None, secret: str, name: str) -> None:
    if not secret:
        raise HTTPException(status_code=503, detail=f"{name} is not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_cron_secret(
    controller: Annotated[Controller, Depends(get_controller)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    _check_bearer(authorization, controller.settings.cron_secret, "CRON_SECRET")


def require_api_token(
    controller: Annotated[Controller, Depends(get_controller)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    _check_bearer(authorization, controller.settings.api_token, "API_TOKEN")


ControllerDep = Annotated[Controller, Depends(get_controller)]


@app.exception_handler(DeploymentNotFoundError)
async def not_found_handler(request: Request, exc: DeploymentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(OperationInProgressError)
async def in_progress_handler(request: Request, exc: OperationInProgressError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidTierError)
async def tier_handler(request: Request, exc: InvalidTierError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(HostingError)
async def hosting_handler(request: Request, exc: HostingError):
    status_code = 503 if exc.transient else 502
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "hosting_status_code": exc.status_code},
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Bot Auto-Scaler API",
        "version": __version__,
        "endpoints": {
            "auto_scale": "POST /cron/auto-scale",
            "deployments": "GET /admin/deployments",
            "provision": "POST /admin/deployments",
            "resize": "POST /admin/deployments/{id}/resources",
            "status": "GET /deployments/{id}/status",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.api_route("/cron/auto-scale", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
def auto_scale(controller: ControllerDep):
    """Run one monitoring and scaling pass over all active deployments."""
    summary = controller.driver.run()
    return summary.to_dict()


@app.get("/admin/deployments", dependencies=[Depends(require_api_token)])
def list_deployments(
    controller: ControllerDep,
    status: str | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """List deployments, optionally filtered by status."""
    deployments = controller.store.list_deployments(status=status, limit=limit, offset=offset)
    return {"deployments": [d.to_dict() for d in deployments], "count": len(deployments)}


@app.get("/admin/deployments/{deployment_id}", dependencies=[Depends(require_api_token)])
def get_deployment(deployment_id: str, controller: ControllerDep):
    return controller.store.get_deployment(deployment_id).to_dict()


@app.post("/admin/deployments", status_code=201, dependencies=[Depends(require_api_token)])
def provision_deployment(request: ProvisionRequest, controller: ControllerDep):
    """Provision the bot server for an order. Idempotent per order."""
    deployment = controller.executor.provision(
        request.order_ref,
        request.customer_id,
        request.guild_id,
        request.tier,
        performed_by="admin",
    )
    return deployment.to_dict()


@app.post("/admin/deployments/{deployment_id}/suspend", dependencies=[Depends(require_api_token)])
def suspend_deployment(deployment_id: str, controller: ControllerDep, request: SuspendRequest | None = None):
    reason = request.reason if request else None
    return controller.executor.suspend(deployment_id, reason=reason, performed_by="admin").to_dict()


@app.post("/admin/deployments/{deployment_id}/unsuspend", dependencies=[Depends(require_api_token)])
def unsuspend_deployment(deployment_id: str, controller: ControllerDep):
    return controller.executor.unsuspend(deployment_id, performed_by="admin").to_dict()


@app.post("/admin/deployments/{deployment_id}/terminate", dependencies=[Depends(require_api_token)])
def terminate_deployment(deployment_id: str, controller: ControllerDep):
    return controller.executor.terminate(deployment_id, performed_by="admin").to_dict()


@app.post("/admin/deployments/{deployment_id}/acknowledge", dependencies=[Depends(require_api_token)])
def acknowledge_deployment(deployment_id: str, controller: ControllerDep):
    """Clear the operator-attention flag so automatic passes include it again."""
    return controller.executor.acknowledge(deployment_id, performed_by="admin").to_dict()


@app.post("/admin/deployments/{deployment_id}/resources", dependencies=[Depends(require_api_token)])
def update_resources(deployment_id: str, request: ResizeRequest, controller: ControllerDep):
    """Resize a deployment to another tier.

    Shares locking, retry and audit with automatic scaling.
    """
    event = controller.executor.update_resources(
        deployment_id, request.tier, reason=request.reason, triggered_by="admin"
    )
    deployment = controller.store.get_deployment(deployment_id)
    logger.info("Manual resize of %s: %s", deployment_id, event.outcome)
    return {"event": event.to_dict(), "deployment": deployment.to_dict()}


@app.get("/admin/deployments/{deployment_id}/events", dependencies=[Depends(require_api_token)])
def list_events(
    deployment_id: str,
    controller: ControllerDep,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 50,
):
    controller.store.get_deployment(deployment_id)
    events = controller.store.list_scaling_events(deployment_id, limit=limit)
    return {"events": [e.to_dict() for e in events]}


@app.get("/admin/deployments/{deployment_id}/logs", dependencies=[Depends(require_api_token)])
def list_logs(
    deployment_id: str,
    controller: ControllerDep,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 50,
):
    controller.store.get_deployment(deployment_id)
    actions = controller.store.list_actions(deployment_id, limit=limit)
    return {"logs": [a.to_dict() for a in actions]}


@app.get("/admin/statistics", dependencies=[Depends(require_api_token)])
def statistics(controller: ControllerDep):
    return controller.store.get_statistics()


@app.get("/deployments/{deployment_id}/status", response_model=StatusResponse, dependencies=[Depends(require_api_token)])
def deployment_status(deployment_id: str, controller: ControllerDep):
    """Current status, live utilization and upgrade recommendation.

    Uses the same percentage math as the scaling policy. Utilization is
    null when the hosting panel cannot be reached.
    """
    deployment = controller.store.get_deployment(deployment_id)
    utilization = None
    if deployment.server_id and deployment.status not in (TERMINATED, PROVISIONING):
        try:
            usage = controller.client.get_utilization(deployment.server_id)
            utilization = calculate_utilization(
                usage, deployment.memory_mb, deployment.cpu_percent, deployment.disk_mb
            )
        except HostingError as exc:
            logger.warning("Live utilization unavailable for %s: %s", deployment_id, exc)

    recommended = upgrade_recommended(utilization, controller.config.upgrade_recommendation_threshold)
    suggested = controller.tiers.next_tier(deployment.tier) if recommended else None

    return StatusResponse(
        deployment_id=deployment.id,
        status=deployment.status,
        health_status=deployment.health_status,
        tier=deployment.tier,
        resource_limits=deployment.resource_limits,
        utilization=utilization.as_dict() if utilization else None,
        upgrade_recommended=recommended,
        suggested_tier=suggested.value if suggested else None,
        timestamp=datetime.now(),
    )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_server():
    """Run the FastAPI server with uvicorn."""
    import uvicorn

    configure_logging(get_settings().log_level)
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        timeout_graceful_shutdown=5,
    )


if __name__ == "__main__":
    run_server()

"""Database module for deployments and their history."""

from autoscaler.db.models import (
    Deployment,
    DeploymentLog,
    ResourceSample,
    ScalingEvent,
    create_db_engine,
    get_session,
)
from autoscaler.db.service import DeploymentStore

__all__ = [
    "Deployment",
    "DeploymentLog",
    "ResourceSample",
    "ScalingEvent",
    "DeploymentStore",
    "create_db_engine",
    "get_session",
]

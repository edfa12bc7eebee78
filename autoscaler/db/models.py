"""Database models for deployments and their history.

Supports SQLite (default) and PostgreSQL (production).
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

# Use standard JSON type for SQLite/PostgreSQL compatibility
JSON_TYPE = JSON

# Deployment.status
PROVISIONING = "provisioning"
ACTIVE = "active"
SUSPENDED = "suspended"
TERMINATED = "terminated"
ERROR = "error"

# ScalingEvent.outcome
APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by every backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Deployment(Base):
    """One customer's hosted bot instance.

    Resource limits are always exactly the tier table step for ``tier``.
    Rows are retired by moving to ``terminated``, never deleted.
    """

    __tablename__ = "deployments"

    id = Column(String(36), primary_key=True, default=new_id)

    # Identity
    order_ref = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    guild_id = Column(String(64), nullable=False)
    server_id = Column(String(64), nullable=True, index=True)  # hosting handle
    name = Column(String(255), nullable=True)

    # Configuration
    tier = Column(String(32), nullable=False)
    purchased_tier = Column(String(32), nullable=False)  # scale-down floor
    memory_mb = Column(Integer, nullable=False)
    cpu_percent = Column(Integer, nullable=False)
    disk_mb = Column(Integer, nullable=False)

    # Lifecycle
    status = Column(String(32), nullable=False, default=PROVISIONING, index=True)
    health_status = Column(String(32), nullable=False, default="unknown")
    consecutive_failures = Column(Integer, nullable=False, default=0)
    attention_required = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    provisioned_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    suspended_at = Column(DateTime, nullable=True)
    terminated_at = Column(DateTime, nullable=True)

    @property
    def resource_limits(self) -> dict:
        return {
            "memory_mb": self.memory_mb,
            "cpu_percent": self.cpu_percent,
            "disk_mb": self.disk_mb,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for API/display.

        Returns:
            Dictionary representation of the deployment
        """
        return {
            "id": self.id,
            "order_ref": self.order_ref,
            "customer_id": self.customer_id,
            "guild_id": self.guild_id,
            "server_id": self.server_id,
            "name": self.name,
            "tier": self.tier,
            "purchased_tier": self.purchased_tier,
            "resource_limits": self.resource_limits,
            "status": self.status,
            "health_status": self.health_status,
            "consecutive_failures": self.consecutive_failures,
            "attention_required": self.attention_required,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "provisioned_at": self.provisioned_at.isoformat() if self.provisioned_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "suspended_at": self.suspended_at.isoformat() if self.suspended_at else None,
            "terminated_at": self.terminated_at.isoformat() if self.terminated_at else None,
        }


class ResourceSample(Base):
    """One utilization observation. Append-only, pruned by retention."""

    __tablename__ = "resource_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(36), ForeignKey("deployments.id"), nullable=False, index=True)
    sampled_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    memory_pct = Column(Float, nullable=False)
    cpu_pct = Column(Float, nullable=False)
    disk_pct = Column(Float, nullable=False)

    # Raw usage as reported by the control-plane
    memory_bytes = Column(BigInteger, nullable=False, default=0)
    cpu_absolute = Column(Float, nullable=False, default=0.0)
    disk_bytes = Column(BigInteger, nullable=False, default=0)
    state = Column(String(32), nullable=True)

    def to_dict(self) -> dict:
        return {
            "deployment_id": self.deployment_id,
            "sampled_at": self.sampled_at.isoformat() if self.sampled_at else None,
            "memory_pct": self.memory_pct,
            "cpu_pct": self.cpu_pct,
            "disk_pct": self.disk_pct,
            "memory_bytes": self.memory_bytes,
            "cpu_absolute": self.cpu_absolute,
            "disk_bytes": self.disk_bytes,
            "state": self.state,
        }


class ScalingEvent(Base):
    """Audit record of a scaling decision that was acted on (or not). Never pruned."""

    __tablename__ = "scaling_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(36), ForeignKey("deployments.id"), nullable=False, index=True)
    decided_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    direction = Column(String(8), nullable=False)  # up, down, none
    reason = Column(Text, nullable=False)
    old_tier = Column(String(32), nullable=True)
    new_tier = Column(String(32), nullable=True)
    old_resources = Column(JSON_TYPE, nullable=True)
    new_resources = Column(JSON_TYPE, nullable=True)
    outcome = Column(String(16), nullable=False, index=True)  # applied, skipped, failed
    error = Column(Text, nullable=True)
    triggered_by = Column(String(64), nullable=False, default="system")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deployment_id": self.deployment_id,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "direction": self.direction,
            "reason": self.reason,
            "old_tier": self.old_tier,
            "new_tier": self.new_tier,
            "old_resources": self.old_resources,
            "new_resources": self.new_resources,
            "outcome": self.outcome,
            "error": self.error,
            "triggered_by": self.triggered_by,
        }


class DeploymentLog(Base):
    """Action log: lifecycle operations and customer notifications."""

    __tablename__ = "deployment_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(36), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False)
    details = Column(JSON_TYPE, nullable=True)
    performed_by = Column(String(64), nullable=False, default="system")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deployment_id": self.deployment_id,
            "action": self.action,
            "status": self.status,
            "details": self.details,
            "performed_by": self.performed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DeploymentLock(Base):
    """Lease lock guarding mutating operations on one deployment."""

    __tablename__ = "deployment_locks"

    deployment_id = Column(String(128), primary_key=True)  # deployment id or "order:<ref>"
    owner = Column(String(64), nullable=False)
    operation = Column(String(64), nullable=True)
    acquired_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)


def create_db_engine(db_url: str):
    """Create database engine and tables.

    Args:
        db_url: Database connection URL (SQLite or PostgreSQL)

    Returns:
        SQLAlchemy engine
    """
    # Use check_same_thread=False for SQLite to allow multi-threading
    connect_args = {}
    if db_url.startswith("sqlite"):
        database = make_url(db_url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30

    engine = create_engine(db_url, echo=False, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return engine


def get_session(engine):
    """Get database session.

    Objects stay readable after the session closes.

    Args:
        engine: SQLAlchemy engine

    Returns:
        New session instance
    """
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    return Session()

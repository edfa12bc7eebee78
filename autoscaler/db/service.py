"""Deployment store.

High-level persistence operations for deployments, their append-only
history, and the per-deployment lease lock that serializes mutating
operations across every process sharing the database.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional

from sqlalchemy import delete, desc, func, update
from sqlalchemy.exc import IntegrityError

from autoscaler.db.models import (
    APPLIED,
    Deployment,
    DeploymentLock,
    DeploymentLog,
    ResourceSample,
    ScalingEvent,
    create_db_engine,
    get_session,
    utcnow,
)
from autoscaler.errors import DeploymentNotFoundError, OperationInProgressError

logger = logging.getLogger(__name__)

UNKNOWN_HEALTH = "unknown"


class DeploymentStore:
    """Store for deployments, samples, scaling events and action logs.

    Every method opens its own session, so a store instance can be shared
    by the worker threads of a monitoring pass.

    Example:
        store = DeploymentStore("sqlite:///DATA/autoscaler.db")
        deployment = store.create_deployment(order_ref="ord_1", ...)
        with store.lock(deployment.id, "suspend"):
            ...
    """

    def __init__(self, db_url: str):
        """Initialize store with database connection.

        Args:
            db_url: Database URL
        """
        self.engine = create_db_engine(db_url)

    # Deployments

    def create_deployment(self, **fields) -> Deployment:
        session = get_session(self.engine)
        try:
            deployment = Deployment(**fields)
            session.add(deployment)
            session.commit()
            return deployment
        finally:
            session.close()

    def get_deployment(self, deployment_id: str) -> Deployment:
        """Get deployment by id.

        Raises:
            DeploymentNotFoundError: If no such deployment exists
        """
        session = get_session(self.engine)
        try:
            deployment = session.get(Deployment, deployment_id)
            if deployment is None:
                raise DeploymentNotFoundError(f"deployment {deployment_id} not found")
            return deployment
        finally:
            session.close()

    def get_by_order(self, order_ref: str, include_terminated: bool = False) -> Optional[Deployment]:
        """Most recent deployment created for an order, or None."""
        session = get_session(self.engine)
        try:
            query = session.query(Deployment).filter_by(order_ref=order_ref)
            if not include_terminated:
                query = query.filter(Deployment.status != "terminated")
            return query.order_by(desc(Deployment.created_at)).first()
        finally:
            session.close()

    def list_deployments(
        self,
        status: Optional[str] = None,
        include_flagged: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Deployment]:
        """List deployments with optional filtering.

        Args:
            status: Filter by lifecycle status
            include_flagged: Whether to include rows awaiting operator attention
            limit: Maximum rows to return
            offset: Offset for pagination

        Returns:
            Deployments, oldest first
        """
        session = get_session(self.engine)
        try:
            query = session.query(Deployment)
            if status:
                query = query.filter_by(status=status)
            if not include_flagged:
                query = query.filter(Deployment.attention_required.is_(False))
            query = query.order_by(Deployment.created_at, Deployment.id).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return query.all()
        finally:
            session.close()

    def update_deployment(self, deployment_id: str, **fields) -> Deployment:
        session = get_session(self.engine)
        try:
            deployment = session.get(Deployment, deployment_id)
            if deployment is None:
                raise DeploymentNotFoundError(f"deployment {deployment_id} not found")
            for key, value in fields.items():
                setattr(deployment, key, value)
            session.commit()
            return deployment
        finally:
            session.close()

    def record_sample_success(self, deployment_id: str, health_status: str) -> None:
        """Reset the failure counter after a successful sample."""
        self.update_deployment(deployment_id, consecutive_failures=0, health_status=health_status)

    def record_sample_failure(self, deployment_id: str, threshold: int) -> Deployment:
        """Count a failed sample; health becomes unknown at the threshold.

        Args:
            deployment_id: Deployment id
            threshold: Consecutive failures that make health unknown

        Returns:
            The updated deployment
        """
        session = get_session(self.engine)
        try:
            session.execute(
                update(Deployment)
                .where(Deployment.id == deployment_id)
                .values(consecutive_failures=Deployment.consecutive_failures + 1)
            )
            deployment = session.get(Deployment, deployment_id)
            if deployment is None:
                raise DeploymentNotFoundError(f"deployment {deployment_id} not found")
            if deployment.consecutive_failures >= threshold and deployment.health_status != UNKNOWN_HEALTH:
                deployment.health_status = UNKNOWN_HEALTH
                logger.warning(
                    "Deployment %s health unknown after %d failed samples",
                    deployment_id, deployment.consecutive_failures,
                )
            session.commit()
            return deployment
        finally:
            session.close()

    def flag_for_attention(self, deployment_id: str, message: str) -> Deployment:
        """Exclude a deployment from automatic passes until an operator acknowledges it."""
        logger.error("Deployment %s needs operator attention: %s", deployment_id, message)
        return self.update_deployment(deployment_id, attention_required=True, error_message=message)

    def clear_attention(self, deployment_id: str) -> Deployment:
        return self.update_deployment(deployment_id, attention_required=False, error_message=None)

    # Resource samples

    def add_sample(self, **fields) -> ResourceSample:
        session = get_session(self.engine)
        try:
            sample = ResourceSample(**fields)
            session.add(sample)
            session.commit()
            return sample
        finally:
            session.close()

    def recent_samples(self, deployment_id: str, limit: int) -> list[ResourceSample]:
        """Most recent samples for a deployment, newest first."""
        session = get_session(self.engine)
        try:
            return (
                session.query(ResourceSample)
                .filter_by(deployment_id=deployment_id)
                .order_by(desc(ResourceSample.sampled_at), desc(ResourceSample.id))
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    def prune_samples(self, older_than: datetime) -> int:
        """Delete samples taken before ``older_than``.

        Returns:
            Number of samples deleted
        """
        session = get_session(self.engine)
        try:
            result = session.execute(
                delete(ResourceSample).where(ResourceSample.sampled_at < older_than)
            )
            session.commit()
            logger.info("Pruned %d resource samples older than %s", result.rowcount, older_than.isoformat())
            return result.rowcount
        finally:
            session.close()

    # Scaling events

    def add_scaling_event(self, **fields) -> ScalingEvent:
        session = get_session(self.engine)
        try:
            event = ScalingEvent(**fields)
            session.add(event)
            session.commit()
            return event
        finally:
            session.close()

    def apply_resize(self, deployment_id: str, tier: str, resources: dict, **event_fields) -> tuple[Deployment, ScalingEvent]:
        """Write new tier, limits and the applied event in one transaction.

        Args:
            deployment_id: Deployment id
            tier: New tier name
            resources: ``memory_mb``, ``cpu_percent`` and ``disk_mb`` of the tier step
            **event_fields: Remaining ScalingEvent columns

        Returns:
            Updated deployment and the appended event
        """
        session = get_session(self.engine)
        try:
            deployment = session.get(Deployment, deployment_id)
            if deployment is None:
                raise DeploymentNotFoundError(f"deployment {deployment_id} not found")
            deployment.tier = tier
            deployment.memory_mb = resources["memory_mb"]
            deployment.cpu_percent = resources["cpu_percent"]
            deployment.disk_mb = resources["disk_mb"]
            event = ScalingEvent(
                deployment_id=deployment_id,
                outcome=APPLIED,
                new_tier=tier,
                new_resources=dict(resources),
                **event_fields,
            )
            session.add(event)
            session.commit()
            return deployment, event
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def latest_scaling_event(
        self,
        deployment_id: str,
        outcomes: Optional[tuple[str, ...]] = None,
    ) -> Optional[ScalingEvent]:
        session = get_session(self.engine)
        try:
            query = session.query(ScalingEvent).filter_by(deployment_id=deployment_id)
            if outcomes:
                query = query.filter(ScalingEvent.outcome.in_(outcomes))
            return query.order_by(desc(ScalingEvent.decided_at), desc(ScalingEvent.id)).first()
        finally:
            session.close()

    def list_scaling_events(self, deployment_id: str, limit: int = 50) -> list[ScalingEvent]:
        session = get_session(self.engine)
        try:
            return (
                session.query(ScalingEvent)
                .filter_by(deployment_id=deployment_id)
                .order_by(desc(ScalingEvent.decided_at), desc(ScalingEvent.id))
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    # Action log

    def log_action(
        self,
        deployment_id: str,
        action: str,
        status: str,
        details: Optional[dict] = None,
        performed_by: str = "system",
    ) -> DeploymentLog:
        session = get_session(self.engine)
        try:
            entry = DeploymentLog(
                deployment_id=deployment_id,
                action=action,
                status=status,
                details=details or {},
                performed_by=performed_by,
            )
            session.add(entry)
            session.commit()
            return entry
        finally:
            session.close()

    def list_actions(self, deployment_id: str, limit: int = 50) -> list[DeploymentLog]:
        session = get_session(self.engine)
        try:
            return (
                session.query(DeploymentLog)
                .filter_by(deployment_id=deployment_id)
                .order_by(desc(DeploymentLog.created_at), desc(DeploymentLog.id))
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    # Locking

    def acquire_lock(
        self,
        deployment_id: str,
        owner: str,
        operation: Optional[str] = None,
        ttl_seconds: int = 300,
    ) -> None:
        """Take the deployment's lease lock.

        An expired lease (holder crashed mid-operation) is taken over.

        Raises:
            OperationInProgressError: If a live lease is held by someone else
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)
        session = get_session(self.engine)
        try:
            session.add(DeploymentLock(
                deployment_id=deployment_id,
                owner=owner,
                operation=operation,
                acquired_at=now,
                expires_at=expires_at,
            ))
            try:
                session.commit()
                return
            except IntegrityError:
                session.rollback()

            taken = session.execute(
                update(DeploymentLock)
                .where(DeploymentLock.deployment_id == deployment_id)
                .where(DeploymentLock.expires_at <= now)
                .values(owner=owner, operation=operation, acquired_at=now, expires_at=expires_at)
            ).rowcount
            session.commit()
            if taken:
                logger.warning("Took over expired lock on deployment %s", deployment_id)
                return

            holder = session.get(DeploymentLock, deployment_id)
            raise OperationInProgressError(deployment_id, holder.operation if holder else None)
        finally:
            session.close()

    def release_lock(self, deployment_id: str, owner: str) -> bool:
        """Release a lease held by ``owner``. Returns False if it was not held."""
        session = get_session(self.engine)
        try:
            result = session.execute(
                delete(DeploymentLock)
                .where(DeploymentLock.deployment_id == deployment_id)
                .where(DeploymentLock.owner == owner)
            )
            session.commit()
            return result.rowcount > 0
        finally:
            session.close()

    @contextmanager
    def lock(self, deployment_id: str, operation: Optional[str] = None, ttl_seconds: int = 300) -> Iterator[str]:
        """Hold the deployment lock for the duration of the block."""
        owner = uuid.uuid4().hex
        self.acquire_lock(deployment_id, owner, operation, ttl_seconds)
        try:
            yield owner
        finally:
            if not self.release_lock(deployment_id, owner):
                logger.warning("Lock on deployment %s was lost before release", deployment_id)

    def get_statistics(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary with statistics
        """
        session = get_session(self.engine)
        try:
            by_status = dict(
                session.query(Deployment.status, func.count(Deployment.id))
                .group_by(Deployment.status)
                .all()
            )
            by_outcome = dict(
                session.query(ScalingEvent.outcome, func.count(ScalingEvent.id))
                .group_by(ScalingEvent.outcome)
                .all()
            )
            samples = session.query(func.count(ResourceSample.id)).scalar()
            flagged = (
                session.query(func.count(Deployment.id))
                .filter(Deployment.attention_required.is_(True))
                .scalar()
            )
            return {
                "deployments_by_status": by_status,
                "scaling_events_by_outcome": by_outcome,
                "resource_samples": samples or 0,
                "attention_required": flagged or 0,
            }
        finally:
            session.close()

"""Provisioning executor: the only writer of live resources and lifecycle status.

Lifecycle::

    provisioning -> active <-> suspended
          \\           |          /
           +-> error / terminated <-+

A provisioning attempt that failed before a server existed leaves the
deployment in ``error``; provisioning the same order again retries it
(``error -> provisioning``).

Every operation holds the deployment's store lock for its whole duration,
so manual admin actions and the automatic pass cannot interleave.
"""

import logging
import uuid

from autoscaler.db.models import (
    ACTIVE,
    ERROR,
    FAILED,
    PROVISIONING,
    SKIPPED,
    SUSPENDED,
    TERMINATED,
    Deployment,
    ScalingEvent,
    utcnow,
)
from autoscaler.db.service import DeploymentStore
from autoscaler.errors import HostingError, InvalidTransitionError, OperationInProgressError
from autoscaler.hosting.client import HostingClient
from autoscaler.hosting.retry import RetryPolicy
from autoscaler.scaling.policy import ScalingDirection
from autoscaler.scaling.tiers import DEFAULT_TIER_TABLE, Tier, TierTable
from autoscaler.services.notifier import Notifier

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PROVISIONING: {ACTIVE, ERROR, TERMINATED},
    ACTIVE: {SUSPENDED, ERROR, TERMINATED},
    SUSPENDED: {ACTIVE, ERROR, TERMINATED},
    ERROR: {PROVISIONING, TERMINATED},
    TERMINATED: set(),
}

RESIZABLE_STATUSES = {ACTIVE, SUSPENDED}


def server_name(order_ref: str, guild_id: str) -> str:
    return f"bot_{order_ref[:8]}_{guild_id}"


def check_transition(deployment: Deployment, target: str) -> None:
    """Raise InvalidTransitionError unless ``status -> target`` is allowed."""
    if target not in ALLOWED_TRANSITIONS.get(deployment.status, set()):
        raise InvalidTransitionError(deployment.id, deployment.status, target)


class ProvisioningExecutor:
    """Executes lifecycle and resize operations against the hosting platform.

    Hosting calls go through the retry policy: transient failures are
    retried with backoff, permanent ones are raised at once. A failed call
    never changes the stored deployment.
    """

    def __init__(
        self,
        client: HostingClient,
        store: DeploymentStore,
        tier_table: TierTable | None = None,
        retry_policy: RetryPolicy | None = None,
        notifier: Notifier | None = None,
        lock_ttl_seconds: int = 300,
    ):
        self.client = client
        self.store = store
        self.tiers = tier_table or DEFAULT_TIER_TABLE
        self.retry_policy = retry_policy or RetryPolicy()
        self.notifier = notifier
        self.lock_ttl_seconds = lock_ttl_seconds

    def _hosting_call(self, deployment_id: str, action: str, performed_by: str, func, *args):
        """Run a hosting call under the retry policy, logging failures."""
        try:
            return self.retry_policy.call(func, *args)
        except HostingError as exc:
            logger.error("%s failed for deployment %s: %s", action, deployment_id, exc)
            self.store.log_action(
                deployment_id, action, "failed",
                details={"error": str(exc), "status_code": exc.status_code},
                performed_by=performed_by,
            )
            raise

    def provision(
        self,
        order_ref: str,
        customer_id: str,
        guild_id: str,
        tier: Tier | str,
        performed_by: str = "system",
    ) -> Deployment:
        """Create the hosted bot for an order.

        Idempotent per order: an existing non-terminated deployment for the
        order is returned unchanged. A deployment left in ``error`` without
        a server by an earlier failed attempt is provisioned again in place.

        Raises:
            HostingError: If the server could not be created. The deployment
                is left in ``error`` with the message recorded.
        """
        tier = self.tiers.resolve(tier)
        with self.store.lock(f"order:{order_ref}", "provision", self.lock_ttl_seconds):
            existing = self.store.get_by_order(order_ref)
            retry = existing is not None and existing.status == ERROR and not existing.server_id
            if existing is not None and not retry:
                logger.info("Order %s already has deployment %s", order_ref, existing.id)
                return existing

            limits = self.tiers.limits(tier)
            name = server_name(order_ref, guild_id)
            fields = dict(
                customer_id=customer_id,
                guild_id=guild_id,
                name=name,
                tier=tier.value,
                purchased_tier=tier.value,
                status=PROVISIONING,
                **limits.resources(),
            )
            if retry:
                check_transition(existing, PROVISIONING)
                deployment = self.store.update_deployment(existing.id, error_message=None, **fields)
                logger.info("Retrying failed provisioning of %s for order %s", deployment.id, order_ref)
            else:
                deployment = self.store.create_deployment(order_ref=order_ref, **fields)
            self.store.log_action(
                deployment.id, "provision", "pending",
                details={"tier": tier.value, "resources": limits.resources(), "retry": retry},
                performed_by=performed_by,
            )
            logger.info("Provisioning %s for order %s at tier %s", deployment.id, order_ref, tier.value)

            with self.store.lock(deployment.id, "provision", self.lock_ttl_seconds):
                environment = {
                    "TIER": tier.value.upper(),
                    "MAX_GUILDS": str(limits.max_guilds),
                    "DISCORD_GUILD_ID": guild_id,
                    "ORDER_ID": order_ref,
                    "CUSTOMER_ID": customer_id,
                }
                try:
                    handle = self._hosting_call(
                        deployment.id, "provision", performed_by,
                        self.client.create_server, name, limits, environment,
                    )
                except HostingError as exc:
                    self.store.update_deployment(deployment.id, status=ERROR, error_message=str(exc))
                    raise

                deployment = self.store.update_deployment(
                    deployment.id,
                    server_id=handle.server_id,
                    status=ACTIVE,
                    provisioned_at=utcnow(),
                    error_message=None,
                )
                self.store.log_action(
                    deployment.id, "provision", "success",
                    details={"server_id": handle.server_id, "identifier": handle.identifier},
                    performed_by=performed_by,
                )
                logger.info("Provisioned %s as server %s", deployment.id, handle.identifier)

        if self.notifier is not None:
            self.notifier.bot_deployed(deployment)
        return deployment

    def suspend(self, deployment_id: str, reason: str | None = None, performed_by: str = "system") -> Deployment:
        """Suspend an active deployment. No-op if already suspended."""
        self.store.get_deployment(deployment_id)
        with self.store.lock(deployment_id, "suspend", self.lock_ttl_seconds):
            deployment = self.store.get_deployment(deployment_id)
            if deployment.status == SUSPENDED:
                return deployment
            check_transition(deployment, SUSPENDED)
            self._hosting_call(deployment_id, "suspend", performed_by, self.client.suspend, deployment.server_id)
            deployment = self.store.update_deployment(deployment_id, status=SUSPENDED, suspended_at=utcnow())
            self.store.log_action(deployment_id, "suspend", "success", details={"reason": reason}, performed_by=performed_by)
            logger.info("Suspended deployment %s (%s)", deployment_id, reason or "no reason given")
            return deployment

    def unsuspend(self, deployment_id: str, performed_by: str = "system") -> Deployment:
        """Bring a suspended deployment back to active. No-op if already active."""
        self.store.get_deployment(deployment_id)
        with self.store.lock(deployment_id, "unsuspend", self.lock_ttl_seconds):
            deployment = self.store.get_deployment(deployment_id)
            if deployment.status == ACTIVE:
                return deployment
            if deployment.status != SUSPENDED:
                raise InvalidTransitionError(deployment_id, deployment.status, ACTIVE)
            self._hosting_call(deployment_id, "unsuspend", performed_by, self.client.unsuspend, deployment.server_id)
            deployment = self.store.update_deployment(deployment_id, status=ACTIVE, suspended_at=None)
            self.store.log_action(deployment_id, "unsuspend", "success", performed_by=performed_by)
            logger.info("Unsuspended deployment %s", deployment_id)
            return deployment

    def terminate(self, deployment_id: str, performed_by: str = "system") -> Deployment:
        """Delete the hosted server and retire the deployment row."""
        self.store.get_deployment(deployment_id)
        with self.store.lock(deployment_id, "terminate", self.lock_ttl_seconds):
            deployment = self.store.get_deployment(deployment_id)
            if deployment.status == TERMINATED:
                return deployment
            check_transition(deployment, TERMINATED)
            if deployment.server_id:
                self._hosting_call(deployment_id, "terminate", performed_by, self.client.delete, deployment.server_id)
            deployment = self.store.update_deployment(deployment_id, status=TERMINATED, terminated_at=utcnow())
            self.store.log_action(deployment_id, "terminate", "success", performed_by=performed_by)
            logger.info("Terminated deployment %s", deployment_id)
            return deployment

    def acknowledge(self, deployment_id: str, performed_by: str = "admin") -> Deployment:
        """Clear the operator-attention flag so automatic passes resume."""
        self.store.get_deployment(deployment_id)
        with self.store.lock(deployment_id, "acknowledge", self.lock_ttl_seconds):
            deployment = self.store.clear_attention(deployment_id)
            self.store.log_action(deployment_id, "acknowledge", "success", performed_by=performed_by)
            return deployment

    def update_resources(
        self,
        deployment_id: str,
        new_tier: Tier | str,
        reason: str = "manual resize",
        direction: ScalingDirection | None = None,
        expected_tier: Tier | str | None = None,
        triggered_by: str = "admin",
    ) -> ScalingEvent:
        """Resize a deployment to another tier step.

        Args:
            deployment_id: Deployment id
            new_tier: Target tier
            reason: Why the resize was requested (recorded on the event)
            direction: Direction to record; derived from tier order if None
            expected_tier: Skip unless the deployment is still at this tier
            triggered_by: ``auto-scaler`` or the admin performing it

        Returns:
            The appended ScalingEvent (outcome ``applied`` or ``skipped``)

        Raises:
            OperationInProgressError: Another operation holds the lock; a
                ``skipped`` event is appended first
            HostingError: The resize failed; a ``failed`` event is appended
                and the stored resources are unchanged
        """
        new_tier = self.tiers.resolve(new_tier)
        deployment = self.store.get_deployment(deployment_id)
        owner = uuid.uuid4().hex
        try:
            self.store.acquire_lock(deployment_id, owner, "update_resources", self.lock_ttl_seconds)
        except OperationInProgressError:
            self._skip(deployment, new_tier, reason, direction, triggered_by, "operation in progress")
            raise
        try:
            return self._resize_locked(deployment_id, new_tier, reason, direction, expected_tier, triggered_by)
        finally:
            self.store.release_lock(deployment_id, owner)

    def _direction(self, old_tier: str, new_tier: Tier) -> ScalingDirection:
        old_idx = self.tiers.index(old_tier)
        new_idx = self.tiers.index(new_tier)
        if new_idx > old_idx:
            return ScalingDirection.UP
        if new_idx < old_idx:
            return ScalingDirection.DOWN
        return ScalingDirection.NONE

    def _skip(self, deployment, new_tier, reason, direction, triggered_by, why) -> ScalingEvent:
        direction = direction or self._direction(deployment.tier, new_tier)
        logger.info("Skipping resize of %s to %s: %s", deployment.id, new_tier.value, why)
        return self.store.add_scaling_event(
            deployment_id=deployment.id,
            decided_at=utcnow(),
            direction=ScalingDirection(direction).value,
            reason=f"{reason} (skipped: {why})",
            old_tier=deployment.tier,
            new_tier=new_tier.value,
            old_resources=deployment.resource_limits,
            new_resources=deployment.resource_limits,
            outcome=SKIPPED,
            triggered_by=triggered_by,
        )

    def _resize_locked(self, deployment_id, new_tier, reason, direction, expected_tier, triggered_by) -> ScalingEvent:
        deployment = self.store.get_deployment(deployment_id)
        if deployment.status not in RESIZABLE_STATUSES:
            return self._skip(deployment, new_tier, reason, direction, triggered_by, f"deployment is {deployment.status}")
        if expected_tier is not None and self.tiers.resolve(expected_tier) != self.tiers.resolve(deployment.tier):
            return self._skip(deployment, new_tier, reason, direction, triggered_by, f"tier changed to {deployment.tier}")
        if self.tiers.resolve(deployment.tier) == new_tier:
            return self._skip(deployment, new_tier, reason, direction, triggered_by, "already at tier")
        if not deployment.server_id:
            return self._skip(deployment, new_tier, reason, direction, triggered_by, "no server handle")

        direction = ScalingDirection(direction or self._direction(deployment.tier, new_tier))
        limits = self.tiers.limits(new_tier)
        event_fields = dict(
            deployment_id=deployment_id,
            direction=direction.value,
            reason=reason,
            old_tier=deployment.tier,
            old_resources=deployment.resource_limits,
            triggered_by=triggered_by,
        )
        try:
            self._hosting_call(
                deployment_id, "update_resources", triggered_by,
                self.client.resize, deployment.server_id, limits, deployment.name,
            )
        except HostingError as exc:
            self.store.add_scaling_event(
                decided_at=utcnow(),
                new_tier=new_tier.value,
                new_resources=limits.resources(),
                outcome=FAILED,
                error=str(exc),
                **event_fields,
            )
            raise

        event_fields.pop("deployment_id")
        _, event = self.store.apply_resize(
            deployment_id, new_tier.value, limits.resources(), decided_at=utcnow(), **event_fields
        )
        logger.info(
            "Resized deployment %s %s: %s -> %s (%s)",
            deployment_id, direction.value, deployment.tier, new_tier.value, reason,
        )
        return event

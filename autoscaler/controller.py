"""Wiring of the controller components from settings."""

import logging
from dataclasses import dataclass

from autoscaler.db.service import DeploymentStore
from autoscaler.hosting.client import HostingClient
from autoscaler.hosting.retry import RetryPolicy
from autoscaler.scaling.config import ScalingConfig
from autoscaler.scaling.policy import ScalingPolicy
from autoscaler.scaling.tiers import DEFAULT_TIER_TABLE, TierTable
from autoscaler.services.driver import PassDriver
from autoscaler.services.executor import ProvisioningExecutor
from autoscaler.services.monitor import ResourceMonitor
from autoscaler.services.notifier import Notifier
from autoscaler.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class Controller:
    """Every component of one controller instance, injected explicitly."""

    settings: Settings
    config: ScalingConfig
    tiers: TierTable
    store: DeploymentStore
    client: HostingClient
    retry_policy: RetryPolicy
    monitor: ResourceMonitor
    policy: ScalingPolicy
    executor: ProvisioningExecutor
    notifier: Notifier
    driver: PassDriver

    def close(self):
        self.client.close()


def build_controller(
    settings: Settings,
    tier_table: TierTable | None = None,
    transport=None,
    notification_transport=None,
) -> Controller:
    """Build a controller from settings.

    Args:
        settings: Loaded settings
        tier_table: Tier table (defaults to the product tiers)
        transport: Optional httpx transport for the hosting client (tests)
        notification_transport: Optional httpx transport for the webhook (tests)

    Returns:
        Controller with all components wired together
    """
    config = settings.scaling_config()
    tiers = tier_table or DEFAULT_TIER_TABLE
    store = DeploymentStore(settings.database_url)
    client = HostingClient(
        panel_url=settings.hosting_panel_url,
        api_key=settings.hosting_api_key,
        api_mode=settings.hosting_api_mode,
        parent_server_uuid=settings.hosting_parent_server_uuid,
        egg_id=settings.hosting_egg_id,
        timeout=settings.hosting_timeout_seconds,
        transport=transport,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )
    notifier = Notifier(
        store,
        webhook_url=settings.notification_webhook_url,
        webhook_token=settings.notification_webhook_token,
        transport=notification_transport,
    )
    monitor = ResourceMonitor(client, store, retry_policy)
    policy = ScalingPolicy(config, tiers)
    executor = ProvisioningExecutor(
        client,
        store,
        tier_table=tiers,
        retry_policy=retry_policy,
        notifier=notifier,
        lock_ttl_seconds=settings.lock_ttl_seconds,
    )
    driver = PassDriver(
        store,
        monitor,
        policy,
        executor,
        notifier=notifier,
        max_workers=settings.pass_max_workers,
        budget_seconds=settings.pass_budget_seconds,
        failure_threshold=config.failure_threshold,
    )
    logger.info(
        "Controller ready (mode=%s, preset=%s, workers=%d)",
        settings.hosting_api_mode, settings.scaling_preset, settings.pass_max_workers,
    )
    return Controller(
        settings=settings,
        config=config,
        tiers=tiers,
        store=store,
        client=client,
        retry_policy=retry_policy,
        monitor=monitor,
        policy=policy,
        executor=executor,
        notifier=notifier,
        driver=driver,
    )

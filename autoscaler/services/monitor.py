"""Resource monitor: observes utilization and records samples."""

import logging
from dataclasses import dataclass

from autoscaler.db.models import ResourceSample, utcnow
from autoscaler.db.service import DeploymentStore
from autoscaler.errors import HostingError, PermanentHostingError
from autoscaler.hosting.client import HostingClient, ServerUtilization
from autoscaler.hosting.retry import RetryPolicy
from autoscaler.scaling.utilization import Utilization, calculate_utilization

logger = logging.getLogger(__name__)


@dataclass
class SampleResult:
    """Outcome of sampling one deployment. Exactly one of sample/error is set."""

    sample: ResourceSample | None = None
    utilization: Utilization | None = None
    usage: ServerUtilization | None = None
    error: HostingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ResourceMonitor:
    """Fetches live usage and appends a ResourceSample.

    Appending the sample is the only durable side effect; the monitor never
    decides or acts on scaling, and never raises hosting failures.
    """

    def __init__(self, client: HostingClient, store: DeploymentStore, retry_policy: RetryPolicy | None = None):
        self.client = client
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()

    def sample(self, deployment) -> SampleResult:
        """Sample one deployment.

        Args:
            deployment: Deployment row with ``server_id`` and current limits

        Returns:
            SampleResult carrying either the stored sample or the hosting error
        """
        if not deployment.server_id:
            return SampleResult(
                error=PermanentHostingError(f"deployment {deployment.id} has no server handle")
            )

        try:
            usage = self.retry_policy.call(self.client.get_utilization, deployment.server_id)
        except HostingError as exc:
            logger.warning("Sampling deployment %s failed: %s", deployment.id, exc)
            return SampleResult(error=exc)

        utilization = calculate_utilization(
            usage, deployment.memory_mb, deployment.cpu_percent, deployment.disk_mb
        )
        sample = self.store.add_sample(
            deployment_id=deployment.id,
            sampled_at=utcnow(),
            memory_pct=utilization.memory_pct,
            cpu_pct=utilization.cpu_pct,
            disk_pct=utilization.disk_pct,
            memory_bytes=usage.memory_bytes,
            cpu_absolute=usage.cpu_absolute,
            disk_bytes=usage.disk_bytes,
            state=usage.state,
        )
        logger.debug(
            "Sampled %s: memory=%.1f%% cpu=%.1f%% disk=%.1f%%",
            deployment.id, utilization.memory_pct, utilization.cpu_pct, utilization.disk_pct,
        )
        return SampleResult(sample=sample, utilization=utilization, usage=usage)

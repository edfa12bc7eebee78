"""Controller services: monitor, executor, pass driver and notifier."""

from autoscaler.services.monitor import ResourceMonitor, SampleResult
from autoscaler.services.executor import ProvisioningExecutor
from autoscaler.services.driver import PassDriver, PassSummary, DeploymentReport
from autoscaler.services.notifier import Notifier

__all__ = [
    "ResourceMonitor",
    "SampleResult",
    "ProvisioningExecutor",
    "PassDriver",
    "PassSummary",
    "DeploymentReport",
    "Notifier",
]

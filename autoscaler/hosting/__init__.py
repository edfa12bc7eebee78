"""Hosting control-plane client and retry policy."""

from autoscaler.hosting.client import HostingClient, ServerHandle, ServerUtilization
from autoscaler.hosting.retry import RetryPolicy

__all__ = [
    "HostingClient",
    "ServerHandle",
    "ServerUtilization",
    "RetryPolicy",
]

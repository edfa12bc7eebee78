"""Utilization math shared by the scaling policy and the status endpoints.

Every percentage the controller acts on, and every percentage a customer
is shown, comes from :func:`calculate_utilization`.
"""

from dataclasses import dataclass

BYTES_PER_MB = 1024 * 1024

HEALTHY = "healthy"
DEGRADED = "degraded"
UNKNOWN = "unknown"

# Control-plane states in which a bot is expected to be serving.
RUNNING_STATES = {"running", "starting"}


@dataclass(frozen=True)
class Utilization:
    """Observed usage as a percentage of the current tier limits.

    Values above 100 are legal and mean the instance is over-committed.
    """

    memory_pct: float
    cpu_pct: float
    disk_pct: float

    def as_dict(self) -> dict:
        return {
            "memory_pct": self.memory_pct,
            "cpu_pct": self.cpu_pct,
            "disk_pct": self.disk_pct,
        }

    @property
    def peak(self) -> float:
        return max(self.memory_pct, self.cpu_pct, self.disk_pct)

    def exceeds(self, threshold: float) -> bool:
        """True if any dimension is above the threshold."""
        return self.peak > threshold


def _percent(used: float, limit: float) -> float:
    if limit <= 0:
        return float("inf")
    return max(0.0, used / limit * 100)


def calculate_utilization(usage, memory_mb: int, cpu_percent: int, disk_mb: int) -> Utilization:
    """Convert raw control-plane usage into percentages of the limits.

    Args:
        usage: Object with ``memory_bytes``, ``cpu_absolute`` and ``disk_bytes``
        memory_mb: Memory limit in MB
        cpu_percent: CPU limit in percent of one core
        disk_mb: Disk limit in MB

    Returns:
        Utilization clamped to [0, inf)
    """
    return Utilization(
        memory_pct=_percent((usage.memory_bytes or 0) / BYTES_PER_MB, memory_mb),
        cpu_pct=_percent(usage.cpu_absolute or 0, cpu_percent),
        disk_pct=_percent((usage.disk_bytes or 0) / BYTES_PER_MB, disk_mb),
    )


def upgrade_recommended(utilization: Utilization | None, threshold: float = 80.0) -> bool:
    """Whether a customer should be told to move to a bigger tier."""
    if utilization is None:
        return False
    return utilization.exceeds(threshold)


def assess_health(utilization: Utilization, state: str | None, suspended: bool = False) -> str:
    """Health signal derived from one successful sample."""
    if suspended or (state and state not in RUNNING_STATES):
        return DEGRADED
    if utilization.exceeds(100.0):
        return DEGRADED
    return HEALTHY

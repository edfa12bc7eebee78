"""Tier table: the only resource sizes a deployment may have."""

from dataclasses import dataclass
from enum import Enum

from autoscaler.errors import InvalidTierError


class Tier(str, Enum):
    """Purchasable resource packages, cheapest first."""

    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"


@dataclass(frozen=True)
class TierLimits:
    """Resource bounds of one tier step."""

    memory_mb: int
    cpu_percent: int
    disk_mb: int
    swap_mb: int = 0
    io_weight: int = 500
    backups: int = 1
    max_guilds: int = 1

    def resources(self) -> dict:
        """The three scaled dimensions, as stored on a deployment."""
        return {
            "memory_mb": self.memory_mb,
            "cpu_percent": self.cpu_percent,
            "disk_mb": self.disk_mb,
        }


class TierTable:
    """Ordered mapping from tier to resource bounds.

    Order matters: scaling up moves one step towards the end of the
    sequence, scaling down one step towards the start.
    """

    def __init__(self, steps: list[tuple[Tier, TierLimits]]):
        if not steps:
            raise ValueError("tier table needs at least one step")
        self._order = [Tier(tier) for tier, _ in steps]
        if len(set(self._order)) != len(self._order):
            raise ValueError("tier table contains duplicate tiers")
        self._limits = {Tier(tier): limits for tier, limits in steps}

    @property
    def tiers(self) -> list[Tier]:
        return list(self._order)

    @property
    def floor(self) -> Tier:
        return self._order[0]

    @property
    def ceiling(self) -> Tier:
        return self._order[-1]

    def resolve(self, tier: Tier | str) -> Tier:
        """Coerce a tier name to a Tier known to this table."""
        try:
            resolved = Tier(tier)
        except ValueError:
            raise InvalidTierError(f"unknown tier: {tier!r}") from None
        if resolved not in self._limits:
            raise InvalidTierError(f"tier not in table: {resolved.value}")
        return resolved

    def limits(self, tier: Tier | str) -> TierLimits:
        return self._limits[self.resolve(tier)]

    def index(self, tier: Tier | str) -> int:
        return self._order.index(self.resolve(tier))

    def is_ceiling(self, tier: Tier | str) -> bool:
        return self.resolve(tier) == self.ceiling

    def next_tier(self, tier: Tier | str) -> Tier | None:
        """Tier one step up, or None at the ceiling."""
        idx = self.index(tier)
        if idx + 1 >= len(self._order):
            return None
        return self._order[idx + 1]

    def previous_tier(self, tier: Tier | str) -> Tier | None:
        """Tier one step down, or None at the floor."""
        idx = self.index(tier)
        if idx == 0:
            return None
        return self._order[idx - 1]

    def matches(self, tier: Tier | str, memory_mb: int, cpu_percent: int, disk_mb: int) -> bool:
        """True when the values are exactly the tier's step."""
        limits = self.limits(tier)
        return (
            limits.memory_mb == memory_mb
            and limits.cpu_percent == cpu_percent
            and limits.disk_mb == disk_mb
        )


# Sized for a shared parent server (7 GB RAM, 300% CPU, 100 GB disk).
DEFAULT_TIER_TABLE = TierTable([
    (Tier.STARTER, TierLimits(memory_mb=512, cpu_percent=25, disk_mb=2048, backups=1, max_guilds=1)),
    (Tier.PRO, TierLimits(memory_mb=1024, cpu_percent=50, disk_mb=4096, backups=2, max_guilds=3)),
    (Tier.BUSINESS, TierLimits(memory_mb=2048, cpu_percent=100, disk_mb=8192, backups=3, max_guilds=10)),
])

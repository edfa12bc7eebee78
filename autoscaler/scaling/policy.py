"""Tier scaling policy.

Decides, from recent resource samples, whether a deployment should move
one tier up or down. Pure: the caller supplies every input, including the
time of the last scaling event, and acts on the returned decision.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import numpy as np

from autoscaler.scaling.config import ScalingConfig
from autoscaler.scaling.tiers import DEFAULT_TIER_TABLE, Tier, TierTable
from autoscaler.scaling.utilization import Utilization

REASON_COOLDOWN = "cooldown"
REASON_WITHIN_BOUNDS = "within bounds"
REASON_AT_CEILING = "already at ceiling tier"
REASON_AT_FLOOR = "at purchased tier floor"

METRICS = ("memory", "cpu", "disk")


class ScalingDirection(str, Enum):
    """Direction of a scaling decision."""

    UP = "up"
    DOWN = "down"
    NONE = "none"


@dataclass
class ScalingDecision:
    """Result of a scaling decision."""

    should_scale: bool
    direction: ScalingDirection
    current_tier: Tier
    new_tier: Tier | None
    reason: str
    utilization: Utilization | None = None

    def __str__(self) -> str:
        target = self.new_tier.value if self.new_tier else self.current_tier.value
        return (
            f"{self.direction.value.upper()}: {self.current_tier.value} -> {target} "
            f"(reason={self.reason})"
        )


def _window(samples: list, size: int) -> np.ndarray:
    """Matrix of [memory, cpu, disk] rows for the newest ``size`` samples."""
    return np.array(
        [[s.memory_pct, s.cpu_pct, s.disk_pct] for s in samples[:size]],
        dtype=float,
    ).reshape(-1, len(METRICS))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ScalingPolicy:
    """Threshold policy with hysteresis and cooldown.

    Scale up needs every one of the last M samples over the upper threshold
    on some dimension; scale down needs every dimension of the last N
    samples under the lower threshold. A single spike never moves a tier.
    """

    def __init__(self, config: ScalingConfig | None = None, tier_table: TierTable | None = None):
        """Initialize scaling policy.

        Args:
            config: Scaling configuration
            tier_table: Tier table used for stepping
        """
        self.config = config or ScalingConfig()
        self.tiers = tier_table or DEFAULT_TIER_TABLE

    def decide(
        self,
        deployment,
        samples: list,
        last_scaled_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ScalingDecision:
        """Decide whether a deployment should change tier.

        Args:
            deployment: Object with ``tier`` and ``purchased_tier``
            samples: Recent samples, newest first, each with
                ``memory_pct``, ``cpu_pct`` and ``disk_pct``
            last_scaled_at: Time of the most recent scaling event that
                reached the panel (outcome ``applied`` or ``failed``), if
                any. Skipped events never start a cooldown.
            now: Current time (for cooldown)

        Returns:
            ScalingDecision with direction, target tier and reason
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        current = self.tiers.resolve(deployment.tier)
        latest = None
        if samples:
            s = samples[0]
            latest = Utilization(s.memory_pct, s.cpu_pct, s.disk_pct)

        if last_scaled_at is not None and not self._is_cooldown_expired(last_scaled_at, now):
            return self._hold(current, REASON_COOLDOWN, latest)

        up = _window(samples, self.config.scale_up_samples)
        if len(up) >= self.config.scale_up_samples and (up > self.config.scale_up_threshold).any(axis=1).all():
            if self.tiers.is_ceiling(current):
                return self._hold(current, REASON_AT_CEILING, latest)
            target = self.tiers.next_tier(current)
            hottest = METRICS[int(np.argmax(up.mean(axis=0)))]
            return ScalingDecision(
                should_scale=True,
                direction=ScalingDirection.UP,
                current_tier=current,
                new_tier=target,
                reason=f"high {hottest} usage for {len(up)} consecutive samples",
                utilization=latest,
            )

        down = _window(samples, self.config.scale_down_samples)
        if len(down) >= self.config.scale_down_samples and (down < self.config.scale_down_threshold).all():
            floor = self._floor_for(deployment)
            if self.tiers.index(current) <= self.tiers.index(floor):
                return self._hold(current, REASON_AT_FLOOR, latest)
            return ScalingDecision(
                should_scale=True,
                direction=ScalingDirection.DOWN,
                current_tier=current,
                new_tier=self.tiers.previous_tier(current),
                reason=f"low resource usage for {len(down)} consecutive samples",
                utilization=latest,
            )

        return self._hold(current, REASON_WITHIN_BOUNDS, latest)

    def _floor_for(self, deployment) -> Tier:
        """Lowest tier automatic scale-down may reach: the purchased tier."""
        purchased = getattr(deployment, "purchased_tier", None)
        if not purchased:
            return self.tiers.floor
        return self.tiers.resolve(purchased)

    def _is_cooldown_expired(self, last_scaled_at: datetime, now: datetime) -> bool:
        cooldown = timedelta(minutes=self.config.cooldown_minutes)
        return now >= _as_utc(last_scaled_at) + cooldown

    @staticmethod
    def _hold(current: Tier, reason: str, utilization: Utilization | None) -> ScalingDecision:
        return ScalingDecision(
            should_scale=False,
            direction=ScalingDirection.NONE,
            current_tier=current,
            new_tier=None,
            reason=reason,
            utilization=utilization,
        )

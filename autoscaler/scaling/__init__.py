"""Tier table, utilization math and the scaling policy."""

from autoscaler.scaling.config import (
    ScalingConfig,
    CONSERVATIVE_CONFIG,
    BALANCED_CONFIG,
    AGGRESSIVE_CONFIG,
    PRESETS,
)
from autoscaler.scaling.policy import (
    ScalingPolicy,
    ScalingDecision,
    ScalingDirection,
)
from autoscaler.scaling.tiers import Tier, TierLimits, TierTable, DEFAULT_TIER_TABLE
from autoscaler.scaling.utilization import (
    Utilization,
    calculate_utilization,
    upgrade_recommended,
    assess_health,
)

__all__ = [
    "ScalingConfig",
    "CONSERVATIVE_CONFIG",
    "BALANCED_CONFIG",
    "AGGRESSIVE_CONFIG",
    "PRESETS",
    "ScalingPolicy",
    "ScalingDecision",
    "ScalingDirection",
    "Tier",
    "TierLimits",
    "TierTable",
    "DEFAULT_TIER_TABLE",
    "Utilization",
    "calculate_utilization",
    "upgrade_recommended",
    "assess_health",
]

"""Configuration for the auto-scaling policy."""

from dataclasses import asdict, dataclass


@dataclass
class ScalingConfig:
    """Configuration for the tier scaling policy.

    Thresholds are utilization percentages of the deployment's current
    tier limits (80.0 means 80%).

    Attributes:
        scale_up_threshold: Any metric above this counts as an over-threshold sample
        scale_down_threshold: All metrics below this count as an idle sample

        scale_up_samples: Most recent samples that must all be over threshold (M)
        scale_down_samples: Most recent samples that must all be idle (N, N >= M)

        cooldown_minutes: Minutes after a scaling event during which nothing scales

        failure_threshold: Consecutive sampling failures before health becomes unknown
        upgrade_recommendation_threshold: Utilization above which customers are
            told an upgrade is recommended
    """

    # Thresholds (percent of tier limits)
    scale_up_threshold: float = 80.0
    scale_down_threshold: float = 30.0

    # Windows (samples, one per pass)
    scale_up_samples: int = 3    # 3 passes (~15 min at a 5-min trigger)
    scale_down_samples: int = 10  # 10 passes (~50 min)

    cooldown_minutes: int = 15

    failure_threshold: int = 3

    upgrade_recommendation_threshold: float = 80.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """Validate configuration parameters."""
        if not 0 < self.scale_up_threshold:
            raise ValueError("scale_up_threshold must be positive")
        if not 0 <= self.scale_down_threshold:
            raise ValueError("scale_down_threshold must be non-negative")
        if self.scale_down_threshold >= self.scale_up_threshold:
            raise ValueError("scale_down_threshold must be < scale_up_threshold")
        if self.scale_up_samples < 1:
            raise ValueError("scale_up_samples must be at least 1")
        if self.scale_down_samples < self.scale_up_samples:
            raise ValueError("scale_down_samples must be >= scale_up_samples")
        if self.cooldown_minutes < 0:
            raise ValueError("cooldown_minutes must be non-negative")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

    @property
    def history_window(self) -> int:
        """Number of recent samples the policy needs to see."""
        return max(self.scale_up_samples, self.scale_down_samples)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "ScalingConfig":
        """Create config from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            ScalingConfig instance
        """
        return cls(**config_dict)


# Predefined configurations
CONSERVATIVE_CONFIG = ScalingConfig(
    scale_up_threshold=85.0,
    scale_down_threshold=20.0,
    scale_up_samples=5,
    scale_down_samples=20,
    cooldown_minutes=30,
)

BALANCED_CONFIG = ScalingConfig(
    scale_up_threshold=80.0,
    scale_down_threshold=30.0,
    scale_up_samples=3,
    scale_down_samples=10,
    cooldown_minutes=15,
)

AGGRESSIVE_CONFIG = ScalingConfig(
    scale_up_threshold=75.0,
    scale_down_threshold=35.0,
    scale_up_samples=2,
    scale_down_samples=6,
    cooldown_minutes=10,
)

PRESETS: dict[str, ScalingConfig] = {
    "conservative": CONSERVATIVE_CONFIG,
    "balanced": BALANCED_CONFIG,
    "aggressive": AGGRESSIVE_CONFIG,
}

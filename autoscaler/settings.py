from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from autoscaler.scaling.config import PRESETS, ScalingConfig


class Settings(BaseSettings):
    # Persistence
    database_url: str = "sqlite:///DATA/autoscaler.db"

    # Hosting control-plane
    hosting_panel_url: str = ""
    hosting_api_key: str = ""
    hosting_api_mode: str = "splitter"  # splitter | application
    hosting_parent_server_uuid: str = ""
    hosting_egg_id: int = 15
    hosting_timeout_seconds: float = 10.0

    # Retry policy for hosting calls
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 8.0

    # Monitoring pass
    pass_max_workers: int = 4
    pass_budget_seconds: float = 50.0
    lock_ttl_seconds: int = 300
    sample_retention_days: int = 14

    # Scaling policy. Unset overrides fall back to the preset.
    scaling_preset: str = "balanced"  # conservative | balanced | aggressive
    scale_up_threshold: Optional[float] = None
    scale_down_threshold: Optional[float] = None
    scale_up_samples: Optional[int] = None
    scale_down_samples: Optional[int] = None
    cooldown_minutes: Optional[int] = None
    failure_threshold: Optional[int] = None

    # Shared secrets
    cron_secret: str = ""
    api_token: str = ""

    # Customer notifications (bot webhook)
    notification_webhook_url: Optional[str] = None
    notification_webhook_token: Optional[str] = None

    # App
    app_name: str = "bot-autoscaler"
    log_level: str = "INFO"

    def scaling_config(self) -> ScalingConfig:
        """Build the scaling config from the preset plus any overrides."""
        preset = self.scaling_preset.lower()
        if preset not in PRESETS:
            raise ValueError(f"unknown scaling preset: {self.scaling_preset!r}")
        base = PRESETS[preset].to_dict()
        overrides = {
            "scale_up_threshold": self.scale_up_threshold,
            "scale_down_threshold": self.scale_down_threshold,
            "scale_up_samples": self.scale_up_samples,
            "scale_down_samples": self.scale_down_samples,
            "cooldown_minutes": self.cooldown_minutes,
            "failure_threshold": self.failure_threshold,
        }
        base.update({k: v for k, v in overrides.items() if v is not None})
        return ScalingConfig.from_dict(base)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore"
    )


def get_settings() -> Settings:
    return Settings()

"""Tests for settings loading."""

import pytest

from autoscaler.scaling.config import AGGRESSIVE_CONFIG
from autoscaler.settings import Settings


class TestSettings:
    """Tests for Settings.scaling_config."""

    def test_defaults_use_balanced_preset(self):
        config = Settings(_env_file=None).scaling_config()

        assert config.scale_up_threshold == 80.0
        assert config.scale_up_samples == 3
        assert config.cooldown_minutes == 15

    def test_preset_with_overrides(self):
        settings = Settings(_env_file=None, scaling_preset="aggressive", cooldown_minutes=45)

        config = settings.scaling_config()

        assert config.scale_up_threshold == AGGRESSIVE_CONFIG.scale_up_threshold
        assert config.cooldown_minutes == 45

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SCALE_UP_THRESHOLD", "90")
        monkeypatch.setenv("CRON_SECRET", "from-env")

        settings = Settings(_env_file=None)

        assert settings.cron_secret == "from-env"
        assert settings.scaling_config().scale_up_threshold == 90.0

    def test_invalid_override_rejected(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, scale_down_threshold=95.0).scaling_config()

    def test_unknown_preset_rejected(self):
        with pytest.raises(ValueError, match="agressive"):
            Settings(_env_file=None, scaling_preset="agressive").scaling_config()

    def test_preset_name_is_case_insensitive(self):
        config = Settings(_env_file=None, scaling_preset="AGGRESSIVE").scaling_config()

        assert config.scale_up_threshold == AGGRESSIVE_CONFIG.scale_up_threshold

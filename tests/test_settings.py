"""
Tests for environment-driven settings.
"""

from unittest.mock import patch

from notus.settings import Settings, get_settings, load_settings


class TestLoadSettings:
    """Tests for reading NOTUS_* variables."""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = load_settings()
        assert settings == Settings()
        assert settings.cache_ttl_seconds == 900.0
        assert settings.discovery_start_radius_miles == 0.5
        assert settings.discovery_max_attempts == 5
        assert settings.discovery_max_sensors == 10
        assert settings.staleness_minutes == 60.0
        assert settings.miles_per_degree == 69.0
        assert settings.rolling_min_records == 24
        assert settings.pm25_standard == "2012"

    def test_overrides(self):
        env = {
            "NOTUS_DATABASE_URL": "sqlite:///other.db",
            "NOTUS_CACHE_TTL_SECONDS": "60",
            "NOTUS_DISCOVERY_MAX_ATTEMPTS": "3",
            "NOTUS_MILES_PER_DEGREE": "54.6",
            "NOTUS_PM25_STANDARD": "2024",
            "NOTUS_PROVIDERS": "purpleair, airnow",
            "NOTUS_LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = load_settings()
        assert settings.database_url == "sqlite:///other.db"
        assert settings.cache_ttl_seconds == 60.0
        assert settings.discovery_max_attempts == 3
        assert settings.miles_per_degree == 54.6
        assert settings.pm25_standard == "2024"
        assert settings.providers == ("PURPLEAIR", "AIRNOW")
        assert settings.log_level == "DEBUG"

    def test_invalid_values_fall_back(self):
        env = {
            "NOTUS_CACHE_TTL_SECONDS": "soon",
            "NOTUS_DISCOVERY_MAX_ATTEMPTS": "0",
            "NOTUS_DATABASE_URL": "   ",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = load_settings()
        assert settings.cache_ttl_seconds == 900.0
        assert settings.discovery_max_attempts == 5
        assert settings.database_url == "sqlite:///notus.db"

    def test_unknown_pm25_standard_falls_back_to_2012(self):
        with patch.dict("os.environ", {"NOTUS_PM25_STANDARD": "2099"}, clear=True):
            settings = load_settings()
        assert settings.pm25_standard == "2012"

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()

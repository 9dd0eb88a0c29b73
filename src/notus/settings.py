# Notus: aggregate nearby air quality and weather sensor readings
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Runtime configuration for Notus.

All tunables are read from ``NOTUS_*`` environment variables once per
process. Blank or unparseable values fall back to the defaults rather than
failing, so a partially configured deployment still runs.

Provider API keys are not part of Settings; each provider reads its own key
from the environment at call time.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

_PREFIX = "NOTUS_"

# PM2.5 breakpoint tables the index conversion knows about
PM25_STANDARDS = ("2012", "2024")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///notus.db"
    cache_ttl_seconds: float = 900.0
    coordinate_precision: int = 4
    discovery_start_radius_miles: float = 0.5
    discovery_max_attempts: int = 5
    discovery_max_sensors: int = 10
    staleness_minutes: float = 60.0
    miles_per_degree: float = 69.0
    default_radius_miles: float = 5.0
    rolling_window_hours: float = 24.0
    rolling_min_records: int = 24
    provider_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    max_workers: int = 4
    pm25_standard: str = "2012"
    providers: tuple[str, ...] = ()
    log_level: str = "INFO"


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(_PREFIX + name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_number_env(name: str, default, cast=float, minimum=None):
    value = os.getenv(_PREFIX + name)
    if value is None or not value.strip():
        return default
    try:
        parsed = cast(value.strip())
    except ValueError:
        return default
    if minimum is not None and parsed < minimum:
        return default
    return parsed


def _read_choice_env(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = _read_str_env(name, default)
    return value if value in choices else default


def _read_list_env(name: str) -> tuple[str, ...]:
    value = os.getenv(_PREFIX + name)
    if not value:
        return ()
    return tuple(item.strip().upper() for item in value.split(",") if item.strip())


def load_settings() -> Settings:
    """Build Settings from the current environment (uncached)."""
    defaults = Settings()
    return Settings(
        database_url=_read_str_env("DATABASE_URL", defaults.database_url),
        cache_ttl_seconds=_read_number_env(
            "CACHE_TTL_SECONDS", defaults.cache_ttl_seconds, minimum=0
        ),
        coordinate_precision=_read_number_env(
            "COORDINATE_PRECISION", defaults.coordinate_precision, cast=int, minimum=0
        ),
        discovery_start_radius_miles=_read_number_env(
            "DISCOVERY_START_RADIUS_MILES",
            defaults.discovery_start_radius_miles,
            minimum=0.01,
        ),
        discovery_max_attempts=_read_number_env(
            "DISCOVERY_MAX_ATTEMPTS", defaults.discovery_max_attempts, cast=int, minimum=1
        ),
        discovery_max_sensors=_read_number_env(
            "DISCOVERY_MAX_SENSORS", defaults.discovery_max_sensors, cast=int, minimum=1
        ),
        staleness_minutes=_read_number_env(
            "STALENESS_MINUTES", defaults.staleness_minutes, minimum=1
        ),
        miles_per_degree=_read_number_env(
            "MILES_PER_DEGREE", defaults.miles_per_degree, minimum=1
        ),
        default_radius_miles=_read_number_env(
            "DEFAULT_RADIUS_MILES", defaults.default_radius_miles, minimum=0.01
        ),
        rolling_window_hours=_read_number_env(
            "ROLLING_WINDOW_HOURS", defaults.rolling_window_hours, minimum=1
        ),
        rolling_min_records=_read_number_env(
            "ROLLING_MIN_RECORDS", defaults.rolling_min_records, cast=int, minimum=1
        ),
        provider_timeout_seconds=_read_number_env(
            "PROVIDER_TIMEOUT_SECONDS", defaults.provider_timeout_seconds, minimum=1
        ),
        request_timeout_seconds=_read_number_env(
            "REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds, minimum=1
        ),
        max_workers=_read_number_env(
            "MAX_WORKERS", defaults.max_workers, cast=int, minimum=1
        ),
        pm25_standard=_read_choice_env(
            "PM25_STANDARD", defaults.pm25_standard, PM25_STANDARDS
        ),
        providers=_read_list_env("PROVIDERS"),
        log_level=_read_str_env("LOG_LEVEL", defaults.log_level).upper(),
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, read from the environment once."""
    return load_settings()

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

"""Aggregate nearby air quality and weather sensor readings"""

from . import sources  # noqa: F401
from .aggregator import Aggregator, LocationRunStatus, ProviderOutcome, summarise_readings
from .cache import ResultCache
from .database_operations import AggregateRecord, Datastore, MonitoredLocation
from .discovery import SensorDiscovery
from .errors import ProviderConfigurationError
from .metrics import NO_INDEX, concentration_to_index
from .rolling import RollingWindowTracker
from .settings import Settings, get_settings

__version__ = "0.1.0"

__all__ = [
    "Aggregator",
    "AggregateRecord",
    "Datastore",
    "LocationRunStatus",
    "MonitoredLocation",
    "NO_INDEX",
    "ProviderConfigurationError",
    "ProviderOutcome",
    "ResultCache",
    "RollingWindowTracker",
    "SensorDiscovery",
    "Settings",
    "concentration_to_index",
    "get_settings",
    "summarise_readings",
]

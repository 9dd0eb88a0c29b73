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
Provider adapters for Notus.

Each module fetches and normalises readings from one sensor network and
registers itself with the global registry when imported.
"""

# Import provider modules to trigger their registration
from . import (
    airnow,  # noqa: F401
    openweather,  # noqa: F401
    purpleair,  # noqa: F401
)

__all__ = ["airnow", "openweather", "purpleair"]

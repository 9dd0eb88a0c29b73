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
Concentration-to-index conversion.

Turns raw pollutant concentrations reported by sensor networks into US EPA
AQI values by piecewise-linear interpolation over regulatory breakpoint
tables, one table per pollutant.

Quick Start:
    >>> from notus import metrics
    >>>
    >>> metrics.concentration_to_index("PM2.5", 12.0)
    50
    >>> metrics.concentration_to_index("PM2.5", 12.0, standard="2024")
    56
    >>> metrics.concentration_to_index("unobtainium", 12.0) is metrics.NO_INDEX
    True

Conversion never raises: anything that cannot be converted yields NO_INDEX
so that one bad reading cannot abort an aggregation run.
"""

import math
from logging import getLogger

from . import us_epa
from .base import AQIResult, round_half_up, standardise_pollutant

logger = getLogger(__name__)

# Re-export key types
__all__ = [
    "NO_INDEX",
    "concentration_to_index",
    "index_category",
    "round_half_up",
    "AQIResult",
]

# Sentinel for "no index available"
NO_INDEX = None


def concentration_to_index(
    pollutant: str,
    concentration: float | None,
    standard: str | None = None,
) -> int | None:
    """
    Convert a pollutant concentration to a US EPA AQI value.

    Args:
        pollutant: Pollutant name in any common form ("PM2.5", "pm25", "ozone")
        concentration: Concentration in the table's native units
        standard: PM2.5 breakpoint version ("2012" or "2024"); None for 2012

    Returns:
        Integer AQI in [0, 500], or NO_INDEX if the pollutant is unknown or
        the concentration is missing. Negative concentrations clamp to the
        table minimum, concentrations above the table clamp to 500.
    """
    if concentration is None:
        return NO_INDEX
    try:
        concentration = float(concentration)
    except (TypeError, ValueError):
        return NO_INDEX
    if math.isnan(concentration):
        return NO_INDEX
    if math.isinf(concentration):
        return us_epa.SCALE_MAX if concentration > 0 else 0

    standard_name = standardise_pollutant(pollutant)
    if standard_name is None:
        logger.debug(f"No breakpoint table for pollutant {pollutant!r}")
        return NO_INDEX

    try:
        result = us_epa.calculate(concentration, standard_name, standard=standard)
    except ValueError as e:
        logger.warning(f"Cannot convert {pollutant} concentration: {e}")
        return NO_INDEX

    return result.value


def index_category(index: int | None) -> str | None:
    """
    Return the US EPA category name for an AQI value.

    Example:
        >>> index_category(42)
        'Good'
    """
    return us_epa.category_for(index)

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
Base types, constants, and utilities for AQI calculations.

This module provides the foundation for index conversion: breakpoint
types, pollutant name standardisation and the piecewise-linear
interpolation shared by every breakpoint table.
"""

import math
from dataclasses import dataclass
from typing import TypedDict

# =============================================================================
# Types
# =============================================================================


class Breakpoint(TypedDict):
    """A single AQI breakpoint definition."""

    low_conc: float  # Low concentration bound (inclusive)
    high_conc: float  # High concentration bound (inclusive)
    low_aqi: int  # Low AQI bound
    high_aqi: int  # High AQI bound
    category: str  # Category name (e.g., "Good", "Moderate")


@dataclass
class AQIResult:
    """Result of an AQI calculation for a single pollutant."""

    value: int | None  # AQI value (None if cannot be calculated)
    category: str | None  # Category name
    pollutant: str  # Pollutant name
    concentration: float | None  # Input concentration (after truncation)
    unit: str  # Unit of concentration


# =============================================================================
# Rounding
# =============================================================================


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero for positives.

    Python's round() uses banker's rounding (round(52.5) == 52), which is
    not how AQI values are reported.
    """
    return int(math.floor(value + 0.5))


# =============================================================================
# Pollutant Standardisation
# =============================================================================

STANDARD_POLLUTANTS = ("PM2.5", "PM10", "O3", "NO2", "SO2", "CO")

# Map common pollutant names to standard forms
POLLUTANT_ALIASES = {
    # PM2.5 variants
    "pm2.5": "PM2.5",
    "pm25": "PM2.5",
    "pm2_5": "PM2.5",
    "pm 2.5": "PM2.5",
    "fine particulate": "PM2.5",
    "fine particles": "PM2.5",
    # PM10 variants
    "pm10": "PM10",
    "pm 10": "PM10",
    "coarse particulate": "PM10",
    # Ozone variants
    "o3": "O3",
    "ozone": "O3",
    # Nitrogen dioxide variants
    "no2": "NO2",
    "nitrogen dioxide": "NO2",
    "nitrogen_dioxide": "NO2",
    # Sulphur dioxide variants
    "so2": "SO2",
    "sulfur dioxide": "SO2",
    "sulphur dioxide": "SO2",
    "sulfur_dioxide": "SO2",
    "sulphur_dioxide": "SO2",
    # Carbon monoxide variants
    "co": "CO",
    "carbon monoxide": "CO",
    "carbon_monoxide": "CO",
}


def standardise_pollutant(pollutant: str | None) -> str | None:
    """
    Standardise a pollutant name to its canonical form.

    Args:
        pollutant: Pollutant name in any common format

    Returns:
        Standardised pollutant name, or None if not recognised
    """
    if not pollutant:
        return None

    if pollutant in STANDARD_POLLUTANTS:
        return pollutant

    return POLLUTANT_ALIASES.get(pollutant.strip().lower())


# =============================================================================
# Breakpoint Interpolation
# =============================================================================


def calculate_aqi_from_breakpoints(
    concentration: float,
    breakpoints: list[Breakpoint],
    scale_max: int = 500,
) -> AQIResult:
    """
    Calculate AQI value using linear interpolation between breakpoints.

    This is the standard EPA-style calculation:

    AQI = ((high_aqi - low_aqi) / (high_conc - low_conc)) * (conc - low_conc) + low_aqi

    Out-of-table concentrations are clamped instead of rejected:
    - below the first range: the first range's low AQI
    - in the gap between two ranges: the next range's low AQI
    - above the last range: `scale_max`

    Args:
        concentration: Pollutant concentration (must be in the table's units)
        breakpoints: List of breakpoint definitions, sorted by concentration
        scale_max: Index reported for concentrations above the table

    Returns:
        AQIResult with the interpolated value
    """
    for bp in breakpoints:
        if concentration < bp["low_conc"]:
            return _result(bp["low_aqi"], bp, concentration)

        if concentration <= bp["high_conc"]:
            aqi_range = bp["high_aqi"] - bp["low_aqi"]
            conc_range = bp["high_conc"] - bp["low_conc"]

            if conc_range == 0:
                # Edge case: single-point breakpoint
                aqi_value = bp["low_aqi"]
            else:
                aqi_value = (aqi_range / conc_range) * (
                    concentration - bp["low_conc"]
                ) + bp["low_aqi"]

            return _result(round_half_up(aqi_value), bp, concentration)

    return _result(scale_max, breakpoints[-1], concentration)


def _result(value: int, bp: Breakpoint, concentration: float) -> AQIResult:
    return AQIResult(
        value=value,
        category=bp["category"],
        pollutant="",  # Set by caller
        concentration=concentration,
        unit="",  # Set by caller
    )

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
US EPA Air Quality Index (AQI) breakpoint tables.

The US EPA AQI uses a 0-500 scale divided into six categories:
Good (0-50), Moderate (51-100), Unhealthy for Sensitive Groups (101-150),
Unhealthy (151-200), Very Unhealthy (201-300), Hazardous (301-500).

Reference: https://www.airnow.gov/aqi/aqi-basics/
CFR: 40 CFR Appendix G to Part 58

Each pollutant has exactly one table so that the index is monotonic in
concentration. O3 uses the 8-hour table; SO2 joins the 1-hour table
(AQI 0-200) with the 24-hour table (AQI 201-500) as the EPA does.

PM2.5 defaults to the 2012 table, the one PurpleAir-derived AQI figures
have historically been reported against. The May 2024 revision is
selectable with standard="2024".

Note: O3 uses ppm, PM uses µg/m³, CO uses ppm, SO2/NO2 use ppb.
"""

from .base import AQIResult, Breakpoint, calculate_aqi_from_breakpoints

SCALE_MAX = 500


# =============================================================================
# Categories
# =============================================================================

CATEGORIES = {
    (0, 50): "Good",
    (51, 100): "Moderate",
    (101, 150): "Unhealthy for Sensitive Groups",
    (151, 200): "Unhealthy",
    (201, 300): "Very Unhealthy",
    (301, 500): "Hazardous",
}


def category_for(aqi: int | None) -> str | None:
    """Return the category name for an AQI value, or None for no value."""
    if aqi is None:
        return None
    for (_, aqi_high), category in CATEGORIES.items():
        if aqi <= aqi_high:
            return category
    return "Hazardous"


# =============================================================================
# Breakpoints
# =============================================================================

# Units for each pollutant (as used in breakpoints)
UNITS = {
    "O3": "ppm",
    "PM2.5": "µg/m³",
    "PM10": "µg/m³",
    "CO": "ppm",
    "SO2": "ppb",
    "NO2": "ppb",
}

# Decimal places each pollutant is truncated to before lookup
TRUNCATION = {
    "O3": 3,
    "PM2.5": 1,
    "PM10": 0,
    "CO": 1,
    "SO2": 0,
    "NO2": 0,
}


def _make_breakpoint(
    low_conc: float,
    high_conc: float,
    low_aqi: int,
    high_aqi: int,
) -> Breakpoint:
    return Breakpoint(
        low_conc=low_conc,
        high_conc=high_conc,
        low_aqi=low_aqi,
        high_aqi=high_aqi,
        category=category_for(low_aqi),
    )


# PM2.5 (µg/m³, 24-hour) - Updated May 2024
PM25_BREAKPOINTS = [
    _make_breakpoint(0.0, 9.0, 0, 50),
    _make_breakpoint(9.1, 35.4, 51, 100),
    _make_breakpoint(35.5, 55.4, 101, 150),
    _make_breakpoint(55.5, 125.4, 151, 200),
    _make_breakpoint(125.5, 225.4, 201, 300),
    _make_breakpoint(225.5, 325.4, 301, 400),
    _make_breakpoint(325.5, 500.4, 401, 500),
]

# PM2.5 (µg/m³, 24-hour) - 2012 standard, superseded in 2024
PM25_2012_BREAKPOINTS = [
    _make_breakpoint(0.0, 12.0, 0, 50),
    _make_breakpoint(12.1, 35.4, 51, 100),
    _make_breakpoint(35.5, 55.4, 101, 150),
    _make_breakpoint(55.5, 150.4, 151, 200),
    _make_breakpoint(150.5, 250.4, 201, 300),
    _make_breakpoint(250.5, 350.4, 301, 400),
    _make_breakpoint(350.5, 500.4, 401, 500),
]

# PM10 (µg/m³, 24-hour)
PM10_BREAKPOINTS = [
    _make_breakpoint(0, 54, 0, 50),
    _make_breakpoint(55, 154, 51, 100),
    _make_breakpoint(155, 254, 101, 150),
    _make_breakpoint(255, 354, 151, 200),
    _make_breakpoint(355, 424, 201, 300),
    _make_breakpoint(425, 504, 301, 400),
    _make_breakpoint(505, 604, 401, 500),
]

# O3 (ppm, 8-hour)
O3_BREAKPOINTS = [
    _make_breakpoint(0.000, 0.054, 0, 50),
    _make_breakpoint(0.055, 0.070, 51, 100),
    _make_breakpoint(0.071, 0.085, 101, 150),
    _make_breakpoint(0.086, 0.105, 151, 200),
    _make_breakpoint(0.106, 0.200, 201, 300),
]

# CO (ppm, 8-hour)
CO_BREAKPOINTS = [
    _make_breakpoint(0.0, 4.4, 0, 50),
    _make_breakpoint(4.5, 9.4, 51, 100),
    _make_breakpoint(9.5, 12.4, 101, 150),
    _make_breakpoint(12.5, 15.4, 151, 200),
    _make_breakpoint(15.5, 30.4, 201, 300),
    _make_breakpoint(30.5, 40.4, 301, 400),
    _make_breakpoint(40.5, 50.4, 401, 500),
]

# SO2 (ppb) - 1-hour rows up to AQI 200, 24-hour rows above
SO2_BREAKPOINTS = [
    _make_breakpoint(0, 35, 0, 50),
    _make_breakpoint(36, 75, 51, 100),
    _make_breakpoint(76, 185, 101, 150),
    _make_breakpoint(186, 304, 151, 200),
    _make_breakpoint(305, 604, 201, 300),
    _make_breakpoint(605, 804, 301, 400),
    _make_breakpoint(805, 1004, 401, 500),
]

# NO2 (ppb, 1-hour)
NO2_BREAKPOINTS = [
    _make_breakpoint(0, 53, 0, 50),
    _make_breakpoint(54, 100, 51, 100),
    _make_breakpoint(101, 360, 101, 150),
    _make_breakpoint(361, 649, 151, 200),
    _make_breakpoint(650, 1249, 201, 300),
    _make_breakpoint(1250, 1649, 301, 400),
    _make_breakpoint(1650, 2049, 401, 500),
]

BREAKPOINTS = {
    "PM2.5": PM25_2012_BREAKPOINTS,
    "PM10": PM10_BREAKPOINTS,
    "O3": O3_BREAKPOINTS,
    "CO": CO_BREAKPOINTS,
    "SO2": SO2_BREAKPOINTS,
    "NO2": NO2_BREAKPOINTS,
}

PM25_STANDARDS = {
    "2024": PM25_BREAKPOINTS,
    "2012": PM25_2012_BREAKPOINTS,
}


def is_pm25_standard(standard: str) -> bool:
    """True if `standard` names a PM2.5 table ("2012" or "2024")."""
    return standard in PM25_STANDARDS


# =============================================================================
# Truncation
# =============================================================================


def truncate(value: float, decimal_places: int) -> float:
    """
    Truncate a value to a specified number of decimal places.

    Note: This truncates (floors toward zero), not rounds.
    """
    if decimal_places == 0:
        return float(int(value))
    factor = 10**decimal_places
    return float(int(value * factor)) / factor


# =============================================================================
# Calculation
# =============================================================================


def get_breakpoints(pollutant: str, standard: str | None = None) -> list[Breakpoint]:
    """
    Get the breakpoint table for a pollutant.

    Args:
        pollutant: Standard pollutant name
        standard: PM2.5 table version ("2012" or "2024"); ignored for others

    Raises:
        ValueError: If the pollutant or standard is not supported
    """
    if pollutant == "PM2.5" and standard is not None:
        if not is_pm25_standard(standard):
            raise ValueError(
                f"Unknown PM2.5 standard '{standard}'. "
                f"Supported: {list(PM25_STANDARDS.keys())}"
            )
        return PM25_STANDARDS[standard]

    if pollutant not in BREAKPOINTS:
        raise ValueError(
            f"Pollutant '{pollutant}' not supported by US EPA AQI. "
            f"Supported: {list(BREAKPOINTS.keys())}"
        )
    return BREAKPOINTS[pollutant]


def calculate(
    concentration: float,
    pollutant: str,
    standard: str | None = None,
) -> AQIResult:
    """
    Calculate US EPA AQI for a single pollutant concentration.

    Args:
        concentration: Pollutant concentration in native units
                      (ppm for O3/CO, ppb for SO2/NO2, µg/m³ for PM)
        pollutant: Standard pollutant name (O3, PM2.5, PM10, CO, SO2, NO2)
        standard: PM2.5 table version, "2012" (default) or "2024"

    Returns:
        AQIResult with AQI value (0-500) and category

    Raises:
        ValueError: If pollutant or standard is not supported
    """
    breakpoints = get_breakpoints(pollutant, standard)

    decimal_places = TRUNCATION.get(pollutant, 0)
    concentration_truncated = truncate(concentration, decimal_places)

    result = calculate_aqi_from_breakpoints(
        concentration_truncated, breakpoints, scale_max=SCALE_MAX
    )
    result.pollutant = pollutant
    result.unit = UNITS[pollutant]
    return result

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
Exceptions raised across Notus.

Most failures in Notus are deliberately non-fatal: a provider that cannot be
reached simply contributes zero readings. The exceptions here are the few
conditions an operator needs to hear about.
"""


class ProviderConfigurationError(ValueError):
    """
    A provider cannot be used because its configuration is missing or rejected.

    Raised by provider adapters when an API key is absent from the
    environment or the provider answers with an authentication failure.
    The aggregator reports it as a location-level failure for that provider
    without stopping the other providers or locations.

    Args:
        provider: Name of the provider that failed
        message: Human-readable description of the problem
    """

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider

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
Provider registry for Notus.

This module provides a simple registry system for managing sensor network
providers. Each provider is registered as a ProviderSpec (a bundle of
functions) and can be retrieved by name.

The registry is just a dictionary - no magic, no complexity. Providers
register themselves when their modules are imported.

Example:
    >>> from notus.registry import register_provider, get_provider
    >>>
    >>> # Register a provider
    >>> register_provider("MY_NETWORK", {
    ...     "name": "My Network",
    ...     "type": "bbox",
    ...     "pollutant": "PM2.5",
    ...     "fetch_readings": my_readings_func,
    ...     "requires_api_key": False
    ... })
    >>>
    >>> # Retrieve and use it
    >>> provider = get_provider("MY_NETWORK")
    >>> result = provider["fetch_readings"](34.05, -118.24, bbox=bbox)
"""

import warnings
from typing import Dict

from .types import ProviderSpec

PROVIDER_TYPES = ("pinned", "bbox", "weather")

# The global registry - just a dictionary mapping names to ProviderSpecs
_PROVIDERS: Dict[str, ProviderSpec] = {}


def register_provider(name: str, spec: ProviderSpec) -> None:
    """
    Register a provider in the global registry.

    Providers are identified by name (case-insensitive). If a provider with
    the same name already exists, it will be replaced with a warning.

    Args:
        name: Unique identifier for the provider (e.g., "PURPLEAIR")
        spec: ProviderSpec containing the provider's functions and metadata

    Raises:
        ValueError: If the spec is missing functions its type requires
    """
    provider_type = spec.get("type", "bbox")
    if provider_type not in PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. Expected one of {PROVIDER_TYPES}"
        )
    if "fetch_readings" not in spec:
        raise ValueError(f"Provider '{name}' must define fetch_readings")
    if provider_type == "pinned" and "fetch_candidates" not in spec:
        raise ValueError(f"Pinned provider '{name}' must define fetch_candidates")

    normalized_name = name.upper()

    if normalized_name in _PROVIDERS:
        warnings.warn(
            f"Provider '{normalized_name}' is already registered and will be replaced",
            UserWarning,
            stacklevel=2,
        )

    _PROVIDERS[normalized_name] = spec


def unregister_provider(name: str) -> bool:
    """
    Remove a provider from the registry.

    Returns:
        bool: True if provider was removed, False if it wasn't registered
    """
    normalized_name = name.upper()

    if normalized_name in _PROVIDERS:
        del _PROVIDERS[normalized_name]
        return True
    return False


def get_provider(name: str) -> ProviderSpec | None:
    """
    Retrieve a registered provider by name.

    Args:
        name: Name of the provider (case-insensitive)

    Returns:
        ProviderSpec | None: The provider specification, or None if not found
    """
    return _PROVIDERS.get(name.upper())


def list_providers() -> list[str]:
    """
    Get a list of all registered provider names.

    Example:
        >>> list_providers()
        ['AIRNOW', 'OPENWEATHER', 'PURPLEAIR']
    """
    return sorted(_PROVIDERS.keys())


def provider_exists(name: str) -> bool:
    """Check if a provider is registered."""
    return name.upper() in _PROVIDERS


def get_provider_info(name: str) -> dict[str, str | bool] | None:
    """
    Get basic information about a registered provider.

    Returns:
        dict | None: Dictionary with 'name', 'type' and 'requires_api_key'
                     keys, or None if provider not found
    """
    provider = get_provider(name)
    if provider is None:
        return None

    return {
        "name": provider["name"],
        "type": provider.get("type", "bbox"),
        "requires_api_key": provider.get("requires_api_key", False),
    }


def clear_registry() -> None:
    """
    Clear all registered providers from the registry.

    This is primarily useful for testing.

    Warning:
        This will remove ALL registered providers, including built-in ones.
    """
    _PROVIDERS.clear()

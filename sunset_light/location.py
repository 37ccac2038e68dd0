#!/usr/bin/env python3
"""Location providers.

The schedule only needs a valid (latitude, longitude) pair.  Sources are
tried in order until one answers:

1. the configuration file
2. HA-style environment variables (HASS_LATITUDE / HASS_LONGITUDE)
3. Home Assistant's own configuration (get_config over the websocket)
4. an IP geolocation lookup
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

IP_GEOLOCATION_URL = os.getenv("IP_GEOLOCATION_URL", "http://ip-api.com/json/")


@dataclass(frozen=True)
class GeoLocation:
    """Immutable latitude/longitude pair in degrees."""
    latitude: float
    longitude: float
    name: Optional[str] = None
    timezone: Optional[str] = None

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")


class LocationProvider:
    """Base class; ``get_location`` returns None when the source has no answer."""

    source = "unknown"

    async def get_location(self) -> Optional[GeoLocation]:
        raise NotImplementedError


class StaticLocationProvider(LocationProvider):
    """Location taken verbatim from the configuration file."""

    source = "config"

    def __init__(self, location: Optional[GeoLocation]):
        self.location = location

    async def get_location(self) -> Optional[GeoLocation]:
        return self.location


class EnvironmentLocationProvider(LocationProvider):
    """HA add-on style environment variables."""

    source = "environment"

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    async def get_location(self) -> Optional[GeoLocation]:
        env = self.environ
        lat = env.get("HASS_LATITUDE", env.get("LATITUDE", ""))
        lon = env.get("HASS_LONGITUDE", env.get("LONGITUDE", ""))
        if not lat or not lon:
            return None
        try:
            return GeoLocation(
                float(lat),
                float(lon),
                timezone=env.get("HASS_TIME_ZONE", env.get("TZ", "")) or None,
            )
        except ValueError as e:
            logger.warning(f"Ignoring invalid location in environment: {e}")
            return None


class HomeAssistantLocationProvider(LocationProvider):
    """Location configured in Home Assistant itself."""

    source = "home assistant"

    def __init__(self, ws_client):
        self.ws_client = ws_client

    async def get_location(self) -> Optional[GeoLocation]:
        result = await self.ws_client.get_config()
        if not result:
            return None
        try:
            return GeoLocation(
                float(result["latitude"]),
                float(result["longitude"]),
                name=result.get("location_name"),
                timezone=result.get("time_zone"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Home Assistant config has no usable location: {e}")
            return None


class IpGeolocationProvider(LocationProvider):
    """Approximate location from the public IP address."""

    source = "ip geolocation"

    def __init__(self, url: str = IP_GEOLOCATION_URL, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def get_location(self) -> Optional[GeoLocation]:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as response:
                    if response.status != 200:
                        logger.warning(f"IP geolocation lookup returned HTTP {response.status}")
                        return None
                    data: Dict[str, Any] = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"IP geolocation lookup failed: {e}")
            return None

        if data.get("status", "success") != "success":
            logger.warning(f"IP geolocation lookup unsuccessful: {data.get('message')}")
            return None
        try:
            return GeoLocation(
                float(data["lat"]),
                float(data["lon"]),
                name=data.get("city"),
                timezone=data.get("timezone"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"IP geolocation response has no usable location: {e}")
            return None


async def resolve_location(*providers: LocationProvider) -> Optional[GeoLocation]:
    """Return the first location any provider yields, or None."""
    for provider in providers:
        location = await provider.get_location()
        if location is not None:
            logger.info(
                f"Using location from {provider.source}: "
                f"lat={location.latitude}, lon={location.longitude}"
                + (f" ({location.name})" if location.name else "")
            )
            return location
        logger.debug(f"No location from {provider.source}")
    return None

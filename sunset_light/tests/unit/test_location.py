#!/usr/bin/env python3
"""Test location.py - location providers and resolution order."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from sunset_light.location import (
    EnvironmentLocationProvider,
    GeoLocation,
    HomeAssistantLocationProvider,
    IpGeolocationProvider,
    StaticLocationProvider,
    resolve_location,
)


def mock_session(status=200, payload=None, error=None):
    """aiohttp.ClientSession stand-in whose get() yields one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)

    get_context = MagicMock()
    get_context.__aenter__ = AsyncMock(return_value=response, side_effect=error)
    get_context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=get_context)

    session_context = MagicMock()
    session_context.__aenter__ = AsyncMock(return_value=session)
    session_context.__aexit__ = AsyncMock(return_value=False)
    return session_context, session


class TestGeoLocation:
    """Coordinate validation."""

    @pytest.mark.parametrize("lat,lon", [(90.1, 0), (-90.1, 0), (0, 180.5), (0, -181)])
    def test_out_of_range(self, lat, lon):
        with pytest.raises(ValueError):
            GeoLocation(lat, lon)

    def test_edges_accepted(self):
        assert GeoLocation(90, 180).latitude == 90
        assert GeoLocation(-90, -180).longitude == -180


class TestEnvironmentProvider:
    """HASS_* variables."""

    @pytest.mark.asyncio
    async def test_hass_variables(self):
        provider = EnvironmentLocationProvider({
            "HASS_LATITUDE": "51.5",
            "HASS_LONGITUDE": "-0.12",
            "HASS_TIME_ZONE": "Europe/London",
        })

        location = await provider.get_location()
        assert location == GeoLocation(51.5, -0.12, timezone="Europe/London")

    @pytest.mark.asyncio
    async def test_plain_variables(self):
        provider = EnvironmentLocationProvider({"LATITUDE": "10", "LONGITUDE": "20"})

        location = await provider.get_location()
        assert (location.latitude, location.longitude) == (10.0, 20.0)
        assert location.timezone is None

    @pytest.mark.asyncio
    async def test_missing(self):
        assert await EnvironmentLocationProvider({"HASS_LATITUDE": "10"}).get_location() is None

    @pytest.mark.asyncio
    async def test_invalid(self):
        provider = EnvironmentLocationProvider({"HASS_LATITUDE": "north", "HASS_LONGITUDE": "20"})
        assert await provider.get_location() is None

    @pytest.mark.asyncio
    async def test_out_of_range(self):
        provider = EnvironmentLocationProvider({"HASS_LATITUDE": "100", "HASS_LONGITUDE": "20"})
        assert await provider.get_location() is None


class TestHomeAssistantProvider:
    """Location from get_config."""

    @pytest.mark.asyncio
    async def test_from_config(self):
        ws_client = MagicMock()
        ws_client.get_config = AsyncMock(return_value={
            "latitude": 52.37,
            "longitude": 4.89,
            "location_name": "Home",
            "time_zone": "Europe/Amsterdam",
        })

        location = await HomeAssistantLocationProvider(ws_client).get_location()
        assert location == GeoLocation(52.37, 4.89, name="Home", timezone="Europe/Amsterdam")

    @pytest.mark.asyncio
    async def test_request_failed(self):
        ws_client = MagicMock()
        ws_client.get_config = AsyncMock(return_value=None)

        assert await HomeAssistantLocationProvider(ws_client).get_location() is None

    @pytest.mark.asyncio
    async def test_no_coordinates(self):
        ws_client = MagicMock()
        ws_client.get_config = AsyncMock(return_value={"location_name": "Home"})

        assert await HomeAssistantLocationProvider(ws_client).get_location() is None


class TestIpGeolocationProvider:
    """IP lookup over HTTP."""

    @pytest.mark.asyncio
    async def test_success(self):
        session_context, session = mock_session(payload={
            "status": "success",
            "lat": 48.85,
            "lon": 2.35,
            "city": "Paris",
            "timezone": "Europe/Paris",
        })

        with patch("sunset_light.location.aiohttp.ClientSession", return_value=session_context):
            location = await IpGeolocationProvider("http://geo.test/json").get_location()

        session.get.assert_called_once_with("http://geo.test/json")
        assert location == GeoLocation(48.85, 2.35, name="Paris", timezone="Europe/Paris")

    @pytest.mark.asyncio
    async def test_http_error(self):
        session_context, _ = mock_session(status=503)

        with patch("sunset_light.location.aiohttp.ClientSession", return_value=session_context):
            assert await IpGeolocationProvider().get_location() is None

    @pytest.mark.asyncio
    async def test_lookup_failed(self):
        session_context, _ = mock_session(payload={"status": "fail", "message": "private range"})

        with patch("sunset_light.location.aiohttp.ClientSession", return_value=session_context):
            assert await IpGeolocationProvider().get_location() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()])
    async def test_network_errors(self, error):
        session_context, _ = mock_session(error=error)

        with patch("sunset_light.location.aiohttp.ClientSession", return_value=session_context):
            assert await IpGeolocationProvider().get_location() is None


class TestResolveLocation:
    """Provider ordering."""

    @pytest.mark.asyncio
    async def test_first_answer_wins(self):
        later = MagicMock()
        later.get_location = AsyncMock(return_value=GeoLocation(1, 1))

        location = await resolve_location(
            StaticLocationProvider(None),
            EnvironmentLocationProvider({}),
            StaticLocationProvider(GeoLocation(45, 0, name="Configured")),
            later,
        )

        assert location.name == "Configured"
        later.get_location.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing(self):
        assert await resolve_location(StaticLocationProvider(None), EnvironmentLocationProvider({})) is None

#!/usr/bin/env python3
"""Test main.py - service wiring, reconnects and the entry point."""

import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from sunset_light import main as main_module
from sunset_light.config import AppConfig, ConfigurationError, ConnectionConfig, ScheduleConfig
from sunset_light.location import GeoLocation
from sunset_light.main import SunsetLightService, resolve_timezone


@pytest.fixture
def connection():
    return ConnectionConfig("localhost", 8123, "secret")


@pytest.fixture
def app_config():
    schedule = ScheduleConfig(frozenset({"light.desk"}), 5000, 2700, 254)
    return AppConfig(schedule, location=GeoLocation(45.0, 0.0), timezone="UTC")


def make_ws_client(states=None):
    ws_client = MagicMock()
    ws_client.connection_lost = asyncio.Event()
    ws_client.get_states = AsyncMock(return_value=states or [])
    ws_client.call_service = AsyncMock(return_value={"success": True})
    ws_client.get_config = AsyncMock(return_value=None)
    return ws_client


class TestResolveTimezone:
    """Picking the local zone."""

    def test_first_valid(self):
        assert resolve_timezone(None, "", "Europe/Paris", "UTC") == ZoneInfo("Europe/Paris")

    def test_unknown_skipped(self):
        assert resolve_timezone("Mars/Olympus_Mons", "UTC") == ZoneInfo("UTC")

    def test_nothing(self):
        assert resolve_timezone(None, "") is None


class TestService:
    """SunsetLightService."""

    @pytest.mark.asyncio
    async def test_locate_fails_without_any_source(self, connection, monkeypatch):
        for name in ("HASS_LATITUDE", "HASS_LONGITUDE", "LATITUDE", "LONGITUDE"):
            monkeypatch.delenv(name, raising=False)
        app_config = AppConfig(ScheduleConfig(frozenset({"light.desk"}), 5000, 2700, 254))
        service = SunsetLightService(app_config, connection)

        with patch("sunset_light.main.IpGeolocationProvider") as provider_class:
            provider_class.return_value.get_location = AsyncMock(return_value=None)
            with pytest.raises(ConfigurationError):
                await service._locate(make_ws_client())

    @pytest.mark.asyncio
    async def test_run_once_until_connection_lost(self, app_config, connection):
        ws_client = make_ws_client([
            {"entity_id": "light.desk", "state": "on", "attributes": {}},
        ])
        service = SunsetLightService(app_config, connection)
        service.stop_event = asyncio.Event()

        task = asyncio.create_task(service.run_once(ws_client))
        for _ in range(100):
            if ws_client.call_service.await_count:
                break
            await asyncio.sleep(0.01)
        ws_client.connection_lost.set()
        await asyncio.wait_for(task, timeout=1)

        args = ws_client.call_service.await_args.args
        assert args[:2] == ("light", "turn_on")
        assert args[3] == {"entity_id": ["light.desk"]}

    @pytest.mark.asyncio
    async def test_run_reconnects_until_stopped(self, app_config, connection):
        ws_client = make_ws_client()
        ws_client.connect = AsyncMock(side_effect=ConnectionError("refused"))
        ws_client.close = AsyncMock()
        service = SunsetLightService(app_config, connection)

        with patch.object(main_module, "RECONNECT_INTERVAL", 0.01), \
                patch.object(main_module.HomeAssistantWebSocketClient, "from_config", return_value=ws_client):
            task = asyncio.create_task(service.run())
            for _ in range(100):
                if ws_client.connect.await_count >= 2:
                    break
                await asyncio.sleep(0.01)
            service.request_stop()
            await asyncio.wait_for(task, timeout=1)

        assert ws_client.connect.await_count >= 2
        assert ws_client.close.await_count == ws_client.connect.await_count

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [asyncio.TimeoutError(), RuntimeError("handshake garbled")])
    async def test_run_survives_unexpected_errors(self, app_config, connection, error):
        ws_client = make_ws_client()
        ws_client.connect = AsyncMock(side_effect=error)
        ws_client.close = AsyncMock()
        service = SunsetLightService(app_config, connection)

        with patch.object(main_module, "RECONNECT_INTERVAL", 0.01), \
                patch.object(main_module.HomeAssistantWebSocketClient, "from_config", return_value=ws_client):
            task = asyncio.create_task(service.run())
            for _ in range(100):
                if ws_client.connect.await_count >= 2:
                    break
                await asyncio.sleep(0.01)
            service.request_stop()
            await asyncio.wait_for(task, timeout=1)

        assert ws_client.connect.await_count >= 2

    @pytest.mark.asyncio
    async def test_run_propagates_configuration_error(self, connection):
        app_config = AppConfig(ScheduleConfig(frozenset({"light.desk"}), 5000, 2700, 254))
        ws_client = make_ws_client()
        ws_client.connect = AsyncMock()
        ws_client.close = AsyncMock()
        service = SunsetLightService(app_config, connection)

        with patch.object(main_module.HomeAssistantWebSocketClient, "from_config", return_value=ws_client), \
                patch.object(service, "_locate", AsyncMock(side_effect=ConfigurationError("no location"))):
            with pytest.raises(ConfigurationError):
                await asyncio.wait_for(service.run(), timeout=1)

        ws_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_during_silent_handshake(self, app_config, connection):
        """A server that never authenticates cannot block shutdown."""
        async def never():
            await asyncio.Event().wait()

        socket = MagicMock()
        socket.recv = AsyncMock(side_effect=never)
        socket.close = AsyncMock()
        service = SunsetLightService(app_config, connection)

        def short_timeout_client(config):
            return main_module.HomeAssistantWebSocketClient(config.host, config.port, config.access_token, timeout=0.05)

        with patch("sunset_light.ha_client.websockets.connect", AsyncMock(return_value=socket)), \
                patch.object(main_module.HomeAssistantWebSocketClient, "from_config", side_effect=short_timeout_client):
            task = asyncio.create_task(service.run())
            await asyncio.sleep(0.1)
            service.request_stop()
            await asyncio.wait_for(task, timeout=2)

        assert task.done()
        socket.close.assert_awaited()


class TestMain:
    """Entry point."""

    def test_configuration_error_exits(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["sunset-light", "/nonexistent.json"])

        with patch.object(main_module, "_async_main", AsyncMock(side_effect=ConfigurationError("bad"))) as run:
            with pytest.raises(SystemExit) as exc_info:
                main_module.main()

        assert exc_info.value.code == 1
        run.assert_called_once_with("/nonexistent.json")

    def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("HA_TOKEN", raising=False)
        monkeypatch.delenv("SUPERVISOR_TOKEN", raising=False)
        monkeypatch.setattr(sys, "argv", ["sunset-light"])

        with pytest.raises(SystemExit) as exc_info:
            main_module.main()
        assert exc_info.value.code == 1

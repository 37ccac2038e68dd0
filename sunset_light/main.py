#!/usr/bin/env python3
"""Sunset Light service: wires configuration, Home Assistant and the engine."""

import asyncio
import logging
import os
import signal
import sys
from datetime import tzinfo
from typing import Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import AppConfig, ConfigurationError, ConnectionConfig, load_config
from .engine import ReconciliationEngine
from .ha_client import HomeAssistantWebSocketClient
from .light_controller import HomeAssistantDeviceClient
from .location import (
    EnvironmentLocationProvider,
    GeoLocation,
    HomeAssistantLocationProvider,
    IpGeolocationProvider,
    StaticLocationProvider,
    resolve_location,
)
from .state_tracker import StateTracker

logger = logging.getLogger(__name__)

RECONNECT_INTERVAL = 5  # seconds


def resolve_timezone(*names: Optional[str]) -> Optional[tzinfo]:
    """First valid IANA zone among ``names``; None means system local."""
    for name in names:
        if not name:
            continue
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logger.warning("Unknown timezone '%s' – ignoring", name)
    return None


async def _wait_for_any(*events: asyncio.Event) -> None:
    waiters = [asyncio.create_task(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


async def _sleep_unless_stopped(stop_event: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


class SunsetLightService:
    """Connects to Home Assistant and runs the engine until stopped."""

    def __init__(self, app_config: AppConfig, connection: ConnectionConfig):
        self.app_config = app_config
        self.connection = connection
        self.stop_event: Optional[asyncio.Event] = None

    def request_stop(self) -> None:
        if self.stop_event is not None:
            self.stop_event.set()

    async def _locate(self, ws_client: HomeAssistantWebSocketClient) -> GeoLocation:
        location = await resolve_location(
            StaticLocationProvider(self.app_config.location),
            EnvironmentLocationProvider(),
            HomeAssistantLocationProvider(ws_client),
            IpGeolocationProvider(),
        )
        if location is None:
            raise ConfigurationError("No location configured and none could be looked up")
        return location

    async def run_once(self, ws_client: HomeAssistantWebSocketClient) -> None:
        """Run engine and tracker on one connection until it drops or we stop."""
        location = await self._locate(ws_client)
        tz = resolve_timezone(
            self.app_config.timezone,
            location.timezone,
            os.getenv("HASS_TIME_ZONE"),
            os.getenv("TZ"),
        )

        schedule = self.app_config.schedule
        client = HomeAssistantDeviceClient(ws_client)
        engine = ReconciliationEngine(client, schedule, location, tz=tz)
        tracker = None
        if schedule.run_when_lights_appear:
            tracker = StateTracker(client, schedule.device_ids, engine.request_reconcile)

        await engine.start()
        try:
            if tracker is not None:
                await tracker.start()
            await _wait_for_any(self.stop_event, ws_client.connection_lost)
        finally:
            if tracker is not None:
                await tracker.stop()
            await engine.stop()

    async def run(self) -> None:
        """Run with automatic reconnection."""
        self.stop_event = asyncio.Event()

        while not self.stop_event.is_set():
            ws_client = HomeAssistantWebSocketClient.from_config(self.connection)
            try:
                await ws_client.connect()
                await self.run_once(ws_client)
            except ConnectionError as e:
                logger.error(f"Connection error: {e}")
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error(f"Unexpected error: {e}")
            finally:
                await ws_client.close()

            if self.stop_event.is_set():
                break
            logger.info(f"Reconnecting in {RECONNECT_INTERVAL} seconds...")
            await _sleep_unless_stopped(self.stop_event, RECONNECT_INTERVAL)

        logger.info("Sunset Light stopped")


async def _async_main(config_path: Optional[str] = None) -> None:
    connection = ConnectionConfig.from_env()
    app_config = await load_config(config_path)

    service = SunsetLightService(app_config, connection)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_stop)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on some platforms
            pass

    await service.run()


def main():
    """Main entry point."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    config_path = sys.argv[1] if len(sys.argv) > 1 else None

    try:
        asyncio.run(_async_main(config_path))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()

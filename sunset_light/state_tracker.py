#!/usr/bin/env python3
"""Fast on/off tracking for configured lights.

Polls the device client about once a second and remembers the latest
snapshot per light.  When a light goes from off to on, the power-on callback
fires once so the light is corrected right away instead of waiting for the
next minute tick.
"""

import asyncio
import inspect
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .light_controller import DeviceClient, DeviceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds
DEFAULT_IO_TIMEOUT = 10.0  # seconds


class StateTracker:
    """Detect lights being switched on."""

    def __init__(
        self,
        client: DeviceClient,
        device_ids: Iterable[str],
        on_power_on: Callable[[], Any],
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        io_timeout: float = DEFAULT_IO_TIMEOUT,
    ) -> None:
        self.client = client
        self.device_ids = frozenset(device_ids)
        self.on_power_on = on_power_on
        self.interval = interval
        self.io_timeout = io_timeout

        self._snapshots: Dict[str, DeviceSnapshot] = {}
        self._stopping: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def snapshots(self) -> Mapping[str, DeviceSnapshot]:
        """Read-only view of the latest snapshot per light."""
        return MappingProxyType(self._snapshots)

    async def poll_once(self) -> bool:
        """Fetch states once and fire the callback on any off→on transition.

        Returns:
            True if a reconciliation was requested.
        """
        try:
            devices = await asyncio.wait_for(self.client.list_devices(), timeout=self.io_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"State poll failed: {e or type(e).__name__}")
            return False

        force_update = False
        for device in devices:
            if device.id not in self.device_ids:
                continue

            previous = self._snapshots.get(device.id)
            if previous is None:
                logger.debug(f"Tracking {device.id} (on={device.is_on})")
            elif not previous.is_on and device.is_on:
                logger.info(f"{device.id} switched on")
                force_update = True

            self._snapshots[device.id] = device

        if force_update:
            result = self.on_power_on()
            if inspect.isawaitable(result):
                await result
        return force_update

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception(f"Error in state tracker: {e}")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            raise RuntimeError("State tracker already running")
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="sunset-light-state-tracker")
        logger.info(f"Tracking power state of {len(self.device_ids)} light(s) every {self.interval}s")

    async def stop(self) -> None:
        """Stop after the current poll finishes."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

"""
Light controller module.
Provides the device control abstraction the engine talks to, and a Home
Assistant implementation on top of the websocket client.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .brain import kelvin_to_mired, mired_to_kelvin

logger = logging.getLogger(__name__)


class TransientIOError(IOError):
    """Device listing or command dispatch failed; retry on the next tick."""


@dataclass(frozen=True)
class DeviceSnapshot:
    """Point-in-time state of one light."""
    id: str
    is_on: bool
    color_temperature_mired: Optional[int] = None


@dataclass
class LightCommand:
    """Command to set color temperature on a batch of lights."""
    entity_ids: List[str]
    color_temp_mired: int
    transition: Optional[float] = None  # seconds


class DeviceClient(ABC):
    """Abstract device control client."""

    @abstractmethod
    async def list_devices(self) -> List[DeviceSnapshot]:
        """Return current state of all known lights.

        Raises:
            TransientIOError: on network or bridge failure.
        """

    @abstractmethod
    async def set_color_temperature(
        self,
        target_mired: int,
        device_ids: Iterable[str],
        transition: Optional[float] = None,
    ) -> bool:
        """Send one batch command; return True when the bridge accepted it.

        Raises:
            TransientIOError: on network or bridge failure.
        """


class HomeAssistantDeviceClient(DeviceClient):
    """Device client backed by Home Assistant light entities."""

    def __init__(self, websocket_client):
        """Initialize the controller with a websocket client."""
        self.ws_client = websocket_client
        # light.turn_on powers lights on, so commands only target lights last seen on
        self._last_on: Optional[set] = None

    @staticmethod
    def snapshot_from_state(state: Dict[str, Any]) -> DeviceSnapshot:
        """Build a snapshot from a Home Assistant state object.

        Prefers the native ``color_temp`` (mired) attribute; newer Home
        Assistant versions only report ``color_temp_kelvin``.
        """
        attributes = state.get("attributes") or {}
        mired = attributes.get("color_temp")
        if mired is None:
            kelvin = attributes.get("color_temp_kelvin")
            if kelvin:
                mired = kelvin_to_mired(int(kelvin))
        return DeviceSnapshot(
            id=state["entity_id"],
            is_on=state.get("state") == "on",
            color_temperature_mired=int(mired) if mired is not None else None,
        )

    async def list_devices(self) -> List[DeviceSnapshot]:
        states = await self.ws_client.get_states()
        if states is None:
            raise TransientIOError("Failed to fetch light states from Home Assistant")

        lights = []
        for state in states:
            entity_id = state.get("entity_id", "")
            if not entity_id.startswith("light."):
                continue
            lights.append(self.snapshot_from_state(state))
        self._last_on = {light.id for light in lights if light.is_on}
        return lights

    async def set_color_temperature(
        self,
        target_mired: int,
        device_ids: Iterable[str],
        transition: Optional[float] = None,
    ) -> bool:
        targets = set(device_ids)
        if self._last_on is not None:
            targets &= self._last_on
        if not targets:
            logger.debug("No powered-on lights to update")
            return True

        command = LightCommand(
            entity_ids=sorted(targets),
            color_temp_mired=target_mired,
            transition=transition,
        )
        return await self.send_command(command)

    async def send_command(self, command: LightCommand) -> bool:
        if not command.entity_ids:
            logger.error("No target specified for light command")
            return False

        service_data: Dict[str, Any] = {
            # Home Assistant floors 1e6/K into color_temp, which gives this mired back
            "color_temp_kelvin": mired_to_kelvin(command.color_temp_mired),
        }
        if command.transition is not None:
            service_data["transition"] = command.transition

        result = await self.ws_client.call_service(
            "light",
            "turn_on",
            service_data,
            {"entity_id": command.entity_ids},
        )
        if result is None:
            raise TransientIOError(f"light.turn_on failed for {command.entity_ids}")

        logger.debug(f"Sent color temperature {command.color_temp_mired} mired to {command.entity_ids}")
        return True

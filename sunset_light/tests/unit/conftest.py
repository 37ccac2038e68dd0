"""Shared fakes for the unit tests."""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from sunset_light.config import ScheduleConfig
from sunset_light.light_controller import DeviceClient, DeviceSnapshot, TransientIOError
from sunset_light.location import GeoLocation


class FakeDeviceClient(DeviceClient):
    """In-memory bridge that applies color temperature commands to lights that are on."""

    def __init__(self, devices=()):
        self.devices = {device.id: device for device in devices}
        self.commands = []
        self.list_calls = 0
        self.fail_list = False
        self.fail_set = False
        self.reject_set = False
        self.gate = None  # asyncio.Event: list_devices blocks until set
        self.in_flight = 0
        self.max_in_flight = 0

    def set_device(self, device_id, is_on, mired=None):
        self.devices[device_id] = DeviceSnapshot(device_id, is_on, mired)

    async def list_devices(self):
        self.list_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_list:
                raise TransientIOError("bridge unreachable")
            return list(self.devices.values())
        finally:
            self.in_flight -= 1

    async def set_color_temperature(self, target_mired, device_ids, transition=None):
        if self.fail_set:
            raise TransientIOError("bridge unreachable")
        ids = list(device_ids)
        self.commands.append((target_mired, ids, transition))
        if self.reject_set:
            return False
        for device_id in ids:
            device = self.devices.get(device_id)
            if device is not None and device.is_on:
                self.devices[device_id] = replace(device, color_temperature_mired=target_mired)
        return True


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def fake_client_class():
    return FakeDeviceClient


@pytest.fixture
def schedule_config():
    return ScheduleConfig(
        device_ids=frozenset({"light.desk", "light.sofa"}),
        day_color_temperature=5000,
        sunset_color_temperature=2700,
        brightness=254,
    )


@pytest.fixture
def location():
    return GeoLocation(45.0, 0.0)


@pytest.fixture
def clock():
    # Solstice noon at 45°N 0°E: full daylight
    return MutableClock(datetime(2024, 6, 21, 12, 0, 0, tzinfo=timezone.utc))

"""Sunset Light schedule preview.

Prints the day's solar breakpoints for a location and the color temperature
the engine would target through the day, without a running Home Assistant
instance.  With ``--simulate`` the real ReconciliationEngine is driven
against an in-memory light so you can see exactly which commands it would
send.

Example usage:
    python tools/schedule_preview.py 48.8566 2.3522 --date 2024-06-21 --tz Europe/Paris --step 15
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import sys
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sunset_light.brain import TargetCurve, compute_day_schedule, kelvin_to_mired, mired_to_kelvin  # noqa: E402
from sunset_light.config import ScheduleConfig  # noqa: E402
from sunset_light.engine import ReconciliationEngine  # noqa: E402
from sunset_light.light_controller import DeviceClient, DeviceSnapshot  # noqa: E402
from sunset_light.location import GeoLocation  # noqa: E402
from sunset_light.main import resolve_timezone  # noqa: E402
from sunset_light.solar import SolarDomainError  # noqa: E402

PREVIEW_LIGHT = "light.preview"


class RecordingDeviceClient(DeviceClient):
    """Single always-on light that records every command it receives."""

    def __init__(self, initial_mired: Optional[int] = None) -> None:
        self.light = DeviceSnapshot(PREVIEW_LIGHT, True, initial_mired)
        self.commands: List[Tuple[int, List[str]]] = []

    async def list_devices(self) -> List[DeviceSnapshot]:
        return [self.light]

    async def set_color_temperature(self, target_mired, device_ids, transition=None) -> bool:
        self.commands.append((target_mired, list(device_ids)))
        self.light = replace(self.light, color_temperature_mired=target_mired)
        return True


def preview_curve(
    day: date,
    location: GeoLocation,
    day_ct: int,
    sunset_ct: int,
    step: timedelta,
    tz=None,
) -> List[Tuple[datetime, int]]:
    """Target color temperature at every ``step`` through ``day``."""
    schedule = compute_day_schedule(day, location, tz)
    start = datetime.combine(day, time(0, 0), tzinfo=schedule.sunrise.tzinfo)
    samples = []
    moment = start
    while moment.date() == day:
        samples.append((moment, TargetCurve.evaluate(moment, schedule, day_ct, sunset_ct)))
        moment += step
    return samples


async def simulate(
    day: date,
    location: GeoLocation,
    day_ct: int,
    sunset_ct: int,
    step: timedelta,
    tz=None,
) -> List[Tuple[datetime, int]]:
    """Run one reconciliation per ``step`` and return (time, mired) per command sent."""
    samples = preview_curve(day, location, day_ct, sunset_ct, step, tz)
    client = RecordingDeviceClient()
    config = ScheduleConfig(frozenset({PREVIEW_LIGHT}), day_ct, sunset_ct, 254, name="Preview")
    clock_state = {"now": samples[0][0]}
    engine = ReconciliationEngine(client, config, location, clock=lambda: clock_state["now"])

    sent = []
    for moment, _ in samples:
        clock_state["now"] = moment
        if await engine.reconcile():
            sent.append((moment, client.commands[-1][0]))
    return sent


def _format_rows(rows: Iterable[Tuple[datetime, int]]) -> str:
    lines = []
    for moment, kelvin in rows:
        mired = kelvin_to_mired(kelvin)
        lines.append(f"{moment:%H:%M}  {kelvin:>5}K  {mired:>4} mired  (~{mired_to_kelvin(mired)}K on the bulb)")
    return "\n".join(lines) if lines else "(nothing)"


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Preview the Sunset Light schedule for a location")
    parser.add_argument("latitude", type=float, help="Latitude in degrees, north positive")
    parser.add_argument("longitude", type=float, help="Longitude in degrees, east positive")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Calendar day (YYYY-MM-DD), defaults to today",
    )
    parser.add_argument("--tz", default=None, help="IANA timezone, defaults to system local")
    parser.add_argument("--day-ct", type=int, default=5000, help="Daytime color temperature (kelvin)")
    parser.add_argument("--sunset-ct", type=int, default=2700, help="Sunset color temperature (kelvin)")
    parser.add_argument("--step", type=int, default=30, help="Minutes between samples")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Drive the reconciliation engine and list the commands it sends",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


async def _run_from_cli(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    tz = resolve_timezone(args.tz)
    day = args.date or datetime.now(tz).date()
    location = GeoLocation(args.latitude, args.longitude)
    step = timedelta(minutes=args.step)

    try:
        schedule = compute_day_schedule(day, location, tz)
    except SolarDomainError as e:
        print(f"No schedule: {e}")
        return 1

    print(schedule.describe())
    print()
    if args.simulate:
        sent = await simulate(day, location, args.day_ct, args.sunset_ct, step, tz)
        print(_format_rows((moment, mired_to_kelvin(mired)) for moment, mired in sent))
    else:
        print(_format_rows(preview_curve(day, location, args.day_ct, args.sunset_ct, step, tz)))
    return 0


def main() -> None:
    parser = _build_arg_parser()
    args = parser.parse_args()
    sys.exit(asyncio.run(_run_from_cli(args)))


if __name__ == "__main__":
    main()

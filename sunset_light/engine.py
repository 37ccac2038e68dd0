#!/usr/bin/env python3
"""Reconciliation engine: keeps configured lights on the sunset curve.

One worker task owns the cached DaySchedule and performs every
reconciliation.  Timers and the state tracker never touch that state; they
post a trigger ("refresh" or "reconcile") into the engine's inbox and set an
event.  Triggers that arrive while the worker is busy coalesce into a single
extra run once the current one completes.
"""

import asyncio
import logging
from datetime import date, datetime, tzinfo
from typing import Callable, List, Optional, Set

from astral import LocationInfo
from astral.sun import elevation as solar_elevation

from .brain import DaySchedule, TargetCurve, kelvin_to_mired, refresh_day_schedule
from .config import ConfigurationError, ScheduleConfig
from .light_controller import DeviceClient, TransientIOError
from .location import GeoLocation
from .solar import SolarDomainError

logger = logging.getLogger(__name__)

REFRESH = "refresh"
RECONCILE = "reconcile"

DEFAULT_RECONCILE_INTERVAL = 60.0  # seconds
DEFAULT_REFRESH_INTERVAL = 3600.0  # seconds
DEFAULT_IO_TIMEOUT = 10.0  # seconds
DEFAULT_TRANSITION = 0.4  # seconds


class ReconciliationEngine:
    """Drive a set of lights toward the day/sunset color temperature curve."""

    def __init__(
        self,
        client: DeviceClient,
        config: ScheduleConfig,
        location: GeoLocation,
        *,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        io_timeout: float = DEFAULT_IO_TIMEOUT,
        transition: float = DEFAULT_TRANSITION,
    ) -> None:
        """Initialize the engine.

        Raises:
            ConfigurationError: if the schedule or location is missing or
                invalid.  Nothing has been scheduled at that point.
        """
        if client is None:
            raise ConfigurationError("A device client is required")
        if config is None:
            raise ConfigurationError("A schedule configuration is required")
        if location is None:
            raise ConfigurationError("A location is required")
        config.validate()

        self.client = client
        self.config = config
        self.location = location
        self.tz = tz
        self.clock = clock
        self.reconcile_interval = reconcile_interval
        self.refresh_interval = refresh_interval
        self.io_timeout = io_timeout
        self.transition = transition

        self._schedule: Optional[DaySchedule] = None
        # Day whose breakpoints do not exist; retried only by the hourly tick
        self._unavailable_day: Optional[date] = None
        self._pending: Set[str] = set()
        # Created lazily in the running event loop
        self._trigger: Optional[asyncio.Event] = None
        self._stopping: Optional[asyncio.Event] = None
        self._lock: Optional[asyncio.Lock] = None
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Time and schedule
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        if self.tz is not None:
            return datetime.now(self.tz)
        return datetime.now().astimezone()

    @property
    def schedule(self) -> Optional[DaySchedule]:
        return self._schedule

    def refresh_schedule(self, now: Optional[datetime] = None) -> Optional[DaySchedule]:
        """Recompute today's breakpoints if the cached ones are stale.

        Returns None (and drops the cache) when the sun does not cross one of
        the breakpoint angles today at this latitude.
        """
        if now is None:
            now = self.now()
        previous = self._schedule
        try:
            schedule = refresh_day_schedule(previous, now, self.location)
        except SolarDomainError as e:
            logger.error(f"No solar schedule for {now.date()}: {e}")
            self._schedule = None
            self._unavailable_day = now.date()
            return None

        self._unavailable_day = None
        if schedule is not previous:
            self._schedule = schedule
            self._log_elevation(now)
        return schedule

    def _log_elevation(self, now: datetime) -> None:
        observer = LocationInfo(
            latitude=self.location.latitude,
            longitude=self.location.longitude,
        ).observer
        try:
            elev = solar_elevation(observer, now)
        except ValueError:
            return
        logger.info(f"{now.isoformat()} – solar elevation {elev:.1f}°")

    def target_color_temperature(self, now: Optional[datetime] = None) -> Optional[int]:
        """Current target in Kelvin, or None when no schedule exists for today."""
        if now is None:
            now = self.now()
        schedule = self._schedule
        if schedule is None or not schedule.is_current(now):
            if self._unavailable_day == now.date():
                return None
            schedule = self.refresh_schedule(now)
        if schedule is None:
            return None
        return TargetCurve.evaluate(
            now,
            schedule,
            self.config.day_color_temperature,
            self.config.sunset_color_temperature,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _io(self, awaitable, action: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.io_timeout)
        except asyncio.TimeoutError as e:
            raise TransientIOError(f"Timed out after {self.io_timeout}s trying to {action}") from e
        except TransientIOError:
            raise
        except OSError as e:
            raise TransientIOError(f"Failed to {action}: {e}") from e

    async def reconcile(self) -> bool:
        """Bring powered-on lights to the current target.

        At most one reconciliation runs at a time.

        Returns:
            True if a command batch was sent.
        """
        async with self._get_lock():
            return await self._reconcile()

    async def _reconcile(self) -> bool:
        now = self.now()
        target_ct = self.target_color_temperature(now)
        if target_ct is None:
            logger.debug("No solar schedule for today, skipping reconciliation")
            return False
        target_mired = kelvin_to_mired(target_ct)

        try:
            devices = await self._io(self.client.list_devices(), "list devices")
        except TransientIOError as e:
            logger.warning(f"Skipping reconciliation: {e}")
            return False

        mismatched = [
            device.id
            for device in devices
            if device.id in self.config.device_ids
            and device.is_on
            and device.color_temperature_mired != target_mired
        ]
        if not mismatched:
            logger.debug(f"All powered-on lights already at {target_ct}K ({target_mired})")
            return False

        device_ids = sorted(self.config.device_ids)
        logger.info(
            f"Updating light ids [{','.join(device_ids)}] to CT {target_ct}K ({target_mired}), "
            f"mismatched: {','.join(mismatched)}"
        )
        try:
            accepted = await self._io(
                self.client.set_color_temperature(target_mired, device_ids, self.transition),
                "set color temperature",
            )
        except TransientIOError as e:
            logger.warning(f"Color temperature update failed: {e}")
            return False

        if not accepted:
            logger.warning(f"Bridge rejected color temperature update to {target_mired}")
            return False
        return True

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def post(self, kind: str) -> None:
        """Queue a trigger for the worker; duplicates coalesce."""
        if kind not in (REFRESH, RECONCILE):
            raise ValueError(f"Unknown trigger: {kind}")
        self._pending.add(kind)
        if self._trigger is not None:
            self._trigger.set()

    def request_reconcile(self) -> None:
        """Ask for an out-of-band reconciliation (e.g. a light was switched on)."""
        self.post(RECONCILE)

    async def _worker(self) -> None:
        while True:
            await self._trigger.wait()
            self._trigger.clear()
            if self._stopping.is_set():
                break

            pending, self._pending = self._pending, set()
            try:
                if REFRESH in pending:
                    self.refresh_schedule()
                if RECONCILE in pending:
                    await self.reconcile()
            except Exception as e:
                # Keep the engine alive; the next tick retries
                logger.exception(f"Error in reconciliation worker: {e}")

    async def _ticker(self, kind: str, interval: float) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                self.post(kind)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Compute today's schedule and start the worker and both tickers."""
        if self.running:
            raise RuntimeError("Engine already running")

        self._trigger = asyncio.Event()
        self._stopping = asyncio.Event()
        self._get_lock()

        self.refresh_schedule()
        self.post(RECONCILE)

        self._tasks = [
            asyncio.create_task(self._worker(), name="sunset-light-worker"),
            asyncio.create_task(self._ticker(REFRESH, self.refresh_interval), name="sunset-light-refresh"),
            asyncio.create_task(self._ticker(RECONCILE, self.reconcile_interval), name="sunset-light-reconcile"),
        ]
        logger.info(
            f"Started schedule '{self.config.name}' for {len(self.config.device_ids)} light(s): "
            f"day {self.config.day_color_temperature}K, sunset {self.config.sunset_color_temperature}K"
        )

    async def stop(self) -> None:
        """Stop cooperatively.

        An in-flight reconciliation is allowed to finish (its device I/O is
        bounded by ``io_timeout``); no task is cancelled.
        """
        if not self._tasks:
            return
        self._stopping.set()
        self._trigger.set()
        await asyncio.gather(*self._tasks)
        self._tasks = []
        logger.info("Reconciliation engine stopped")

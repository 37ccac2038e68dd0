from .brain import (
    DaySchedule,
    TargetCurve,
    compute_day_schedule,
    refresh_day_schedule,
)
from .engine import ReconciliationEngine
from .solar import (
    Direction,
    ElevationAngle,
    SolarDomainError,
    solve_crossing,
    time_at_solar_elevation,
)
from .state_tracker import StateTracker

__all__ = [
    "DaySchedule",
    "TargetCurve",
    "compute_day_schedule",
    "refresh_day_schedule",
    "ReconciliationEngine",
    "Direction",
    "ElevationAngle",
    "SolarDomainError",
    "solve_crossing",
    "time_at_solar_elevation",
    "StateTracker",
]

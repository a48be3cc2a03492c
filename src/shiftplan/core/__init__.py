"""Core package.

Pure session scheduler plus the small domain models and shift bookkeeping
helpers used around it. Nothing here touches storage.
"""

from shiftplan.core.models import (
    DeadlineUnreachable,
    HorizonExceeded,
    Order,
    Progress,
    ScheduleEntry,
    ScheduleResult,
    SchedulerConfig,
    SchedulingError,
    UnitOccupation,
)
from shiftplan.core.scheduler import run_scheduler

__all__ = [
    "DeadlineUnreachable",
    "HorizonExceeded",
    "Order",
    "Progress",
    "ScheduleEntry",
    "ScheduleResult",
    "SchedulerConfig",
    "SchedulingError",
    "UnitOccupation",
    "run_scheduler",
]

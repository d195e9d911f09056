from sunset_core.schedule.store import (
    due_runs,
    load_scheduled_runs,
    mark_completed,
    mark_failed,
    register_scheduled_run,
    save_scheduled_runs,
    update_scheduled_run,
)
from sunset_core.schedule.types import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    ScheduledRun,
)

__all__ = [
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "ScheduledRun",
    "due_runs",
    "load_scheduled_runs",
    "mark_completed",
    "mark_failed",
    "register_scheduled_run",
    "save_scheduled_runs",
    "update_scheduled_run",
]

"""ARQ worker entrypoint for participation maintenance jobs."""

from __future__ import annotations

from app.tasks.deadline_status import recompute_expired_deadlines
from app.tasks.snapshot_backfill import backfill_team_snapshots, fix_task_real_name_snapshots


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        recompute_expired_deadlines,
        fix_task_real_name_snapshots,
        backfill_team_snapshots,
    ]
    cron_jobs = [
        # Every 15 minutes
        {
            "coroutine": recompute_expired_deadlines,
            "hour": None,
            "minute": {0, 15, 30, 45},
        },
    ]

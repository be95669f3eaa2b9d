"""ARQ background tasks for real-name snapshot maintenance."""

from __future__ import annotations

import uuid

import structlog

from app.core.database import get_session_context
from app.services.snapshots import RealNameSnapshotManager

log = structlog.get_logger()


async def fix_task_real_name_snapshots(ctx: dict, task_id: str) -> int:
    async with get_session_context() as session:
        updated = await RealNameSnapshotManager().fix_real_name_info_for_task(
            session, uuid.UUID(str(task_id))
        )
    log.info("snapshot_backfill.task_fixed", task_id=str(task_id), updated=updated)
    return updated


async def backfill_team_snapshots(ctx: dict) -> dict:
    result = await RealNameSnapshotManager().create_missing_team_snapshots_for_all_tasks()
    return result.model_dump()

"""
ARQ background task: fail memberships whose deadline passed without success.

Scheduled to run every 15 minutes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings
from app.core.database import get_session_context
from app.models.base import utcnow
from app.repositories.memberships import TaskMembershipRepository
from app.services.completion_status import update_completion_status
from taskhub_shared.schemas.common import DEADLINE_SENSITIVE_STATUSES

log = structlog.get_logger()


async def _expired_membership_ids(
    now: datetime, session_factory: Optional[sessionmaker]
) -> List[uuid.UUID]:
    per_page = get_settings().deadline_check_page_size
    ids: List[uuid.UUID] = []
    page = 1
    async with get_session_context(session_factory) as session:
        repo = TaskMembershipRepository(session)
        while True:
            batch = await repo.find_page_by_completion_status_in_and_deadline_not_null(
                DEADLINE_SENSITIVE_STATUSES, page=page, per_page=per_page, deadline_before=now
            )
            ids.extend(m.id for m in batch.items)
            if not batch.has_next:
                break
            page += 1
    return ids


async def recompute_expired_deadlines(
    ctx: dict,
    now: Optional[datetime] = None,
    session_factory: Optional[sessionmaker] = None,
) -> int:
    """Recompute every deadline-sensitive membership whose deadline passed.

    IDs are collected up front since recomputed rows leave the filtered set.
    Returns the number of memberships processed without error.
    """
    now = now or utcnow()
    ids = await _expired_membership_ids(now, session_factory)
    processed = 0
    for membership_id in ids:
        try:
            await update_completion_status(membership_id, session_factory=session_factory, now=now)
            processed += 1
        except Exception:
            log.exception("deadline_status.update_failed", membership_id=str(membership_id))

    if ids:
        log.info("deadline_status.batch_processed", found=len(ids), processed=processed)
    return processed

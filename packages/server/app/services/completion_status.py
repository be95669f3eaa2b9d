"""
Completion status of a membership, derived from its submissions and reviews.

    NOT_SUBMITTED           -> PENDING_REVIEW | FAILED
    PENDING_REVIEW          -> SUCCESS | REJECTED_RESUBMITTABLE | FAILED
    REJECTED_RESUBMITTABLE  -> PENDING_REVIEW | FAILED
    SUCCESS, FAILED         terminal

Recomputation always runs in its own transaction, after the write that
triggered it has committed.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Mapping, Optional, Sequence

import structlog
from sqlalchemy.orm import sessionmaker

from app.core.database import get_session_context
from app.models.base import utcnow, as_naive_utc
from app.models.membership import TaskMembership
from app.models.submission import TaskSubmission, TaskSubmissionReview
from app.models.task import Task
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.submissions import TaskSubmissionRepository, TaskSubmissionReviewRepository
from app.repositories.tasks import TaskRepository
from taskhub_shared.schemas.common import TaskCompletionStatus

log = structlog.get_logger()


def calculate_status(
    membership: TaskMembership,
    task: Task,
    submissions: Sequence[TaskSubmission],
    reviews: Mapping[uuid.UUID, TaskSubmissionReview],
    now: Optional[datetime] = None,
) -> TaskCompletionStatus:
    """Compute the status. ``submissions`` must be ordered newest first.

    A stored SUCCESS is kept as is. A stored FAILED only moves to SUCCESS.
    """
    current = membership.completion_status
    if current == TaskCompletionStatus.SUCCESS:
        return TaskCompletionStatus.SUCCESS
    if any(reviews[s.id].accepted for s in submissions if s.id in reviews):
        return TaskCompletionStatus.SUCCESS
    if current == TaskCompletionStatus.FAILED:
        return TaskCompletionStatus.FAILED

    deadline = as_naive_utc(membership.deadline)
    now = as_naive_utc(now) if now is not None else utcnow()
    deadline_passed = deadline is not None and deadline <= now

    if not submissions:
        return TaskCompletionStatus.FAILED if deadline_passed else TaskCompletionStatus.NOT_SUBMITTED

    latest = submissions[0]
    if latest.id in reviews:
        # Reviewed but not accepted
        if task.resubmittable and not deadline_passed:
            return TaskCompletionStatus.REJECTED_RESUBMITTABLE
        return TaskCompletionStatus.FAILED

    return TaskCompletionStatus.FAILED if deadline_passed else TaskCompletionStatus.PENDING_REVIEW


async def update_completion_status(
    membership_id: uuid.UUID,
    session_factory: Optional[sessionmaker] = None,
    now: Optional[datetime] = None,
) -> Optional[TaskCompletionStatus]:
    """Reload the membership in a new transaction and store its current status.

    Writes only when the value changed. Returns the computed status, or None
    when the membership no longer exists.
    """
    async with get_session_context(session_factory) as session:
        membership = await TaskMembershipRepository(session).get(membership_id)
        if membership is None:
            log.warning("completion_status.membership_missing", membership_id=str(membership_id))
            return None

        task = await TaskRepository(session).get(membership.task_id)
        if task is None:
            log.error("completion_status.task_missing", membership_id=str(membership_id))
            return None

        submissions = await TaskSubmissionRepository(session).find_all_by_membership_newest_first(
            membership_id
        )
        reviews = await TaskSubmissionReviewRepository(session).find_by_submissions(
            [s.id for s in submissions]
        )
        status = calculate_status(membership, task, submissions, reviews, now=now)

        if membership.completion_status != status:
            log.info(
                "completion_status.updated",
                membership_id=str(membership_id),
                old=membership.completion_status,
                new=status.value,
            )
            membership.completion_status = status.value
            session.add(membership)
        return status

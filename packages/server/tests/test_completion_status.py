"""
Tests for completion status derivation and persistence.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.models.membership import TaskMembership
from app.models.submission import TaskSubmission, TaskSubmissionReview
from app.models.task import Task
from app.services.completion_status import calculate_status, update_completion_status
from taskhub_shared.schemas.common import TaskCompletionStatus as Status

NOW = datetime(2026, 3, 1, 12, 0, 0)
PAST = NOW - timedelta(days=1)
FUTURE = NOW + timedelta(days=1)


def _task(resubmittable: bool = True) -> Task:
    return Task(space_id=uuid.uuid4(), name="t", resubmittable=resubmittable)


def _membership(deadline=None) -> TaskMembership:
    return TaskMembership(task_id=uuid.uuid4(), member_id=uuid.uuid4(), deadline=deadline)


def _history(membership: TaskMembership, *verdicts):
    """Build submissions newest first; each verdict is True, False or None (unreviewed)."""
    submissions = []
    reviews = {}
    for version, verdict in zip(range(len(verdicts), 0, -1), verdicts):
        submission = TaskSubmission(membership_id=membership.id, version=version, submitter_id=membership.member_id)
        submissions.append(submission)
        if verdict is not None:
            reviews[submission.id] = TaskSubmissionReview(
                submission_id=submission.id, accepted=verdict, score=50
            )
    return submissions, reviews


# ---------------------------------------------------------------------------
# Pure derivation
# ---------------------------------------------------------------------------


class TestCalculateStatus:
    """Status derivation from submissions, reviews and the deadline."""

    @pytest.mark.parametrize(
        "deadline, verdicts, resubmittable, expected",
        [
            (None, (), True, Status.NOT_SUBMITTED),
            (FUTURE, (), True, Status.NOT_SUBMITTED),
            (PAST, (), True, Status.FAILED),
            (NOW, (), True, Status.FAILED),
            (None, (None,), True, Status.PENDING_REVIEW),
            (FUTURE, (None,), True, Status.PENDING_REVIEW),
            (PAST, (None,), True, Status.FAILED),
            (FUTURE, (False,), True, Status.REJECTED_RESUBMITTABLE),
            (None, (False,), True, Status.REJECTED_RESUBMITTABLE),
            (FUTURE, (False,), False, Status.FAILED),
            (PAST, (False,), True, Status.FAILED),
            (None, (None, False), True, Status.PENDING_REVIEW),
            (None, (True,), False, Status.SUCCESS),
            (PAST, (True,), True, Status.SUCCESS),
            (PAST, (False, True), False, Status.SUCCESS),
            (FUTURE, (None, True), True, Status.SUCCESS),
        ],
    )
    def test_status_table(self, deadline, verdicts, resubmittable, expected):
        """Each history resolves to the expected status."""
        membership = _membership(deadline)
        submissions, reviews = _history(membership, *verdicts)
        assert calculate_status(membership, _task(resubmittable), submissions, reviews, now=NOW) == expected

    def test_aware_timestamps_are_normalized(self):
        membership = _membership(datetime(2026, 3, 1, 13, 0, tzinfo=timezone(timedelta(hours=2))))
        status = calculate_status(membership, _task(), [], {}, now=NOW)
        assert status == Status.FAILED


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestUpdateCompletionStatus:
    """Recomputation stored on the membership row."""

    @pytest.mark.asyncio
    async def test_stores_pending_review(self, session, make_task, make_membership, make_submission):
        """An unreviewed submission is stored as pending review."""
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4())
        await make_submission(membership)

        assert await update_completion_status(membership.id) == Status.PENDING_REVIEW
        await session.refresh(membership)
        assert membership.completion_status == Status.PENDING_REVIEW.value

    @pytest.mark.asyncio
    async def test_deadline_passed_without_submission(self, session, make_task, make_membership):
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4(), deadline=PAST)

        assert await update_completion_status(membership.id, now=NOW) == Status.FAILED
        await session.refresh(membership)
        assert membership.completion_status == Status.FAILED.value

    @pytest.mark.asyncio
    async def test_newest_version_decides(self, session, make_task, make_membership, make_submission):
        """Only the latest submission's review counts when nothing was accepted."""
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4())
        await make_submission(membership, version=1, review=False)
        await make_submission(membership, version=2)

        assert await update_completion_status(membership.id) == Status.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_deleted_review_is_ignored(self, session, make_task, make_membership, make_submission):
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4())
        submission = await make_submission(membership)
        review = TaskSubmissionReview(submission_id=submission.id, accepted=True, score=90)
        review.soft_delete()
        session.add(review)
        await session.commit()

        assert await update_completion_status(membership.id) == Status.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_missing_membership(self):
        """Unknown memberships yield None instead of raising."""
        assert await update_completion_status(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_deleted_membership(self, session, make_task, make_membership):
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4())
        membership.soft_delete()
        session.add(membership)
        await session.commit()

        assert await update_completion_status(membership.id) is None


# ---------------------------------------------------------------------------
# Terminal statuses
# ---------------------------------------------------------------------------


class TestTerminalStatuses:
    """SUCCESS and FAILED are never left by recomputation, except FAILED to SUCCESS."""

    @pytest.mark.parametrize(
        "stored, deadline, verdicts, expected",
        [
            (Status.FAILED, FUTURE, (), Status.FAILED),
            (Status.FAILED, None, (None,), Status.FAILED),
            (Status.FAILED, PAST, (True,), Status.SUCCESS),
            (Status.SUCCESS, None, (), Status.SUCCESS),
            (Status.SUCCESS, PAST, (False,), Status.SUCCESS),
        ],
    )
    def test_stored_status_is_respected(self, stored, deadline, verdicts, expected):
        """The stored terminal status wins over a fresh derivation."""
        membership = _membership(deadline)
        membership.completion_status = stored.value
        submissions, reviews = _history(membership, *verdicts)
        assert calculate_status(membership, _task(), submissions, reviews, now=NOW) == expected

    @pytest.mark.asyncio
    async def test_extending_deadline_keeps_failed(self, session, make_task, make_membership):
        """A later deadline does not revive a failed membership."""
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4(), deadline=PAST)
        assert await update_completion_status(membership.id, now=NOW) == Status.FAILED

        await session.refresh(membership)
        membership.deadline = FUTURE
        session.add(membership)
        await session.commit()

        assert await update_completion_status(membership.id, now=NOW) == Status.FAILED
        await session.refresh(membership)
        assert membership.completion_status == Status.FAILED.value

    @pytest.mark.asyncio
    async def test_removing_review_keeps_success(self, session, make_task, make_membership, make_submission):
        """Deleting the accepted review leaves the membership successful."""
        task = await make_task()
        membership = await make_membership(task, uuid.uuid4())
        await make_submission(membership, review=True)
        assert await update_completion_status(membership.id) == Status.SUCCESS

        review = (await session.execute(select(TaskSubmissionReview))).scalars().one()
        review.soft_delete()
        session.add(review)
        await session.commit()

        assert await update_completion_status(membership.id) == Status.SUCCESS
        await session.refresh(membership)
        assert membership.completion_status == Status.SUCCESS.value

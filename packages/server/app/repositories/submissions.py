"""Submission and review queries."""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.submission import TaskSubmission, TaskSubmissionReview


class TaskSubmissionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, submission_id: uuid.UUID) -> Optional[TaskSubmission]:
        submission = await self.session.get(TaskSubmission, submission_id)
        if submission is None or submission.is_deleted:
            return None
        return submission

    async def find_all_by_membership_newest_first(
        self, membership_id: uuid.UUID
    ) -> List[TaskSubmission]:
        result = await self.session.execute(
            select(TaskSubmission)
            .where(
                TaskSubmission.membership_id == membership_id,
                TaskSubmission.deleted_at.is_(None),
            )
            .order_by(TaskSubmission.version.desc(), TaskSubmission.created_at.desc())
        )
        return list(result.scalars().all())

    async def save(self, submission: TaskSubmission) -> TaskSubmission:
        self.session.add(submission)
        await self.session.flush()
        return submission


class TaskSubmissionReviewRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_submission(self, submission_id: uuid.UUID) -> Optional[TaskSubmissionReview]:
        result = await self.session.execute(
            select(TaskSubmissionReview).where(
                TaskSubmissionReview.submission_id == submission_id,
                TaskSubmissionReview.deleted_at.is_(None),
            )
        )
        return result.scalars().first()

    async def exists_by_submission(self, submission_id: uuid.UUID) -> bool:
        return await self.find_by_submission(submission_id) is not None

    async def find_by_submissions(
        self, submission_ids: Sequence[uuid.UUID]
    ) -> Dict[uuid.UUID, TaskSubmissionReview]:
        if not submission_ids:
            return {}
        result = await self.session.execute(
            select(TaskSubmissionReview).where(
                TaskSubmissionReview.submission_id.in_(list(submission_ids)),
                TaskSubmissionReview.deleted_at.is_(None),
            )
        )
        return {review.submission_id: review for review in result.scalars().all()}

    async def save(self, review: TaskSubmissionReview) -> TaskSubmissionReview:
        self.session.add(review)
        await self.session.flush()
        return review

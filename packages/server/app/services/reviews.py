"""
Submission reviews.

Every mutation queues a status-changed event for the owning membership;
the event is published after the caller's transaction commits. Accepting
a submission of an individual task in a rank-enabled space promotes the
submitter to the task's rank.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.core.events import publish_after_commit
from app.core.protocols import Collaborators, get_collaborators
from app.models.submission import TaskSubmission, TaskSubmissionReview
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.submissions import TaskSubmissionRepository, TaskSubmissionReviewRepository
from app.repositories.tasks import TaskRepository
from app.services.errors import TaskSubmissionAlreadyReviewedError, TaskSubmissionNotReviewedYetError
from taskhub_shared.schemas.common import TaskSubmitterType
from taskhub_shared.schemas.reviews import ReviewDetail, ReviewRead

log = structlog.get_logger()


class SubmissionReviewCoordinator:
    def __init__(self, collaborators: Optional[Collaborators] = None) -> None:
        self.collaborators = collaborators or get_collaborators()

    async def get_review(self, session: AsyncSession, submission_id: uuid.UUID) -> ReviewRead:
        review = await TaskSubmissionReviewRepository(session).find_by_submission(submission_id)
        if review is None:
            return ReviewRead(reviewed=False)
        return ReviewRead(
            reviewed=True,
            detail=ReviewDetail(accepted=review.accepted, score=review.score, comment=review.comment),
        )

    async def create_review(
        self,
        session: AsyncSession,
        submission_id: uuid.UUID,
        accepted: bool,
        score: int,
        comment: str = "",
    ) -> bool:
        """Review a submission. Returns whether the submitter's rank went up."""
        submission = await self._get_submission(session, submission_id)
        reviews = TaskSubmissionReviewRepository(session)
        if await reviews.exists_by_submission(submission_id):
            raise TaskSubmissionAlreadyReviewedError(submission_id)

        try:
            review = await reviews.save(
                TaskSubmissionReview(
                    submission_id=submission_id,
                    accepted=accepted,
                    score=score,
                    comment=comment,
                )
            )
        except IntegrityError as exc:
            # A concurrent create won the active-review slot
            raise TaskSubmissionAlreadyReviewedError(submission_id) from exc
        log.info("review.created", review_id=str(review.id), submission_id=str(submission_id))
        self._signal(session, submission)
        return await self._try_upgrade_rank(session, submission, review)

    async def update_review_accepted(
        self, session: AsyncSession, submission_id: uuid.UUID, accepted: bool
    ) -> bool:
        review = await self._get_review(session, submission_id)
        review.accepted = accepted
        await TaskSubmissionReviewRepository(session).save(review)
        submission = await self._get_submission(session, submission_id)
        self._signal(session, submission)
        return await self._try_upgrade_rank(session, submission, review)

    async def update_review_score(
        self, session: AsyncSession, submission_id: uuid.UUID, score: int
    ) -> None:
        review = await self._get_review(session, submission_id)
        review.score = score
        await TaskSubmissionReviewRepository(session).save(review)
        self._signal(session, await self._get_submission(session, submission_id))

    async def update_review_comment(
        self, session: AsyncSession, submission_id: uuid.UUID, comment: str
    ) -> None:
        review = await self._get_review(session, submission_id)
        review.comment = comment
        await TaskSubmissionReviewRepository(session).save(review)
        self._signal(session, await self._get_submission(session, submission_id))

    async def delete_review(self, session: AsyncSession, submission_id: uuid.UUID) -> None:
        review = await self._get_review(session, submission_id)
        review.soft_delete()
        await TaskSubmissionReviewRepository(session).save(review)
        log.info("review.deleted", review_id=str(review.id), submission_id=str(submission_id))
        self._signal(session, await self._get_submission(session, submission_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_submission(self, session: AsyncSession, submission_id: uuid.UUID) -> TaskSubmission:
        submission = await TaskSubmissionRepository(session).get(submission_id)
        if submission is None:
            raise NotFoundError("task submission", submission_id)
        return submission

    async def _get_review(self, session: AsyncSession, submission_id: uuid.UUID) -> TaskSubmissionReview:
        review = await TaskSubmissionReviewRepository(session).find_by_submission(submission_id)
        if review is None:
            raise TaskSubmissionNotReviewedYetError(submission_id)
        return review

    def _signal(self, session: AsyncSession, submission: TaskSubmission) -> None:
        publish_after_commit(session, submission.membership_id)

    async def _try_upgrade_rank(
        self, session: AsyncSession, submission: TaskSubmission, review: TaskSubmissionReview
    ) -> bool:
        if not review.accepted:
            return False
        membership = await TaskMembershipRepository(session).get(submission.membership_id)
        if membership is None:
            return False
        tasks = TaskRepository(session)
        task = await tasks.get(membership.task_id)
        if task is None or task.submitter_type != TaskSubmitterType.USER or task.rank is None:
            return False
        space = await tasks.get_space(task.space_id)
        if space is None or not space.enable_rank:
            return False

        upgraded = await self.collaborators.ranks.upgrade_rank(space.id, membership.member_id, task.rank)
        if upgraded:
            log.info(
                "rank.upgraded",
                space_id=str(space.id),
                user_id=str(membership.member_id),
                rank=task.rank,
            )
        return upgraded

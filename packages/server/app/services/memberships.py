"""
Task participation lifecycle: join, approve or reject, remove.

Each operation runs inside the caller's session and transaction: eligibility
re-validation, snapshot construction and the membership write commit
together or not at all. Status recomputation is queued on the session and
runs after the commit.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.errors import BadRequestError, BaseError, InternalServerError, NotFoundError
from app.core.events import publish_after_commit
from app.core.protocols import Collaborators, get_collaborators
from app.models.base import as_naive_utc
from app.models.membership import TaskMembership
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.tasks import TaskRepository
from app.services.eligibility import EligibilityEvaluator
from app.services.errors import (
    AlreadyBeTaskParticipantError,
    EmailOrPhoneRequiredError,
    NotTaskParticipantYetError,
)
from app.services.membership_views import MembershipViewService
from app.services.snapshots import RealNameSnapshotManager
from taskhub_shared.schemas.common import ApproveType, TaskSubmitterType
from taskhub_shared.schemas.memberships import (
    ParticipationEligibility,
    TaskMembershipCreate,
    TaskMembershipRead,
    TaskMembershipUpdate,
)

log = structlog.get_logger()


class MembershipLifecycleManager:
    def __init__(
        self,
        collaborators: Optional[Collaborators] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.collaborators = collaborators or get_collaborators()
        self.settings = settings or get_settings()
        self.eligibility = EligibilityEvaluator(self.collaborators, self.settings)
        self.snapshots = RealNameSnapshotManager(self.collaborators, self.settings)
        self.views = MembershipViewService(self.collaborators, self.snapshots)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get_membership(
        self,
        session: AsyncSession,
        membership_id: Optional[uuid.UUID] = None,
        task_id: Optional[uuid.UUID] = None,
        member_id: Optional[uuid.UUID] = None,
    ) -> TaskMembership:
        repo = TaskMembershipRepository(session)
        if membership_id is not None:
            membership = await repo.get(membership_id)
            if membership is None:
                raise NotFoundError("task participant", membership_id)
            return membership
        if task_id is not None and member_id is not None:
            membership = await repo.find_by_task_and_member(task_id, member_id)
            if membership is None:
                raise NotTaskParticipantYetError(task_id, member_id)
            return membership
        raise ValueError("Either membership_id or both task_id and member_id must be provided")

    async def get_task_participant_member_id(
        self, session: AsyncSession, membership_id: uuid.UUID
    ) -> uuid.UUID:
        return (await self._get_membership(session, membership_id=membership_id)).member_id

    async def get_user_participant_id(
        self, session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[uuid.UUID]:
        membership = await TaskMembershipRepository(session).find_by_task_and_member(task_id, user_id)
        return membership.id if membership is not None and not membership.is_team else None

    async def get_team_participant_id(
        self, session: AsyncSession, task_id: uuid.UUID, team_id: uuid.UUID
    ) -> Optional[uuid.UUID]:
        membership = await TaskMembershipRepository(session).find_by_task_and_member(task_id, team_id)
        return membership.id if membership is not None and membership.is_team else None

    async def get_participation_eligibility(
        self, session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> ParticipationEligibility:
        task = await TaskRepository(session).get_or_404(task_id)
        return await self.eligibility.get_participation_eligibility(session, task, user_id)

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    async def add_task_participant(
        self, session: AsyncSession, task_id: uuid.UUID, data: TaskMembershipCreate
    ) -> TaskMembershipRead:
        member_id = data.member_id
        log.info("membership.join_requested", task_id=str(task_id), member_id=str(member_id))
        if not (data.email or "").strip() and not (data.phone or "").strip():
            raise EmailOrPhoneRequiredError(task_id, member_id)

        task = await TaskRepository(session).get_or_404(task_id)
        is_team = task.submitter_type == TaskSubmitterType.TEAM

        if is_team:
            eligibility, roster, _ = await self.eligibility.check_team_eligibility_for_team_task(
                session, task, member_id
            )
        else:
            eligibility = await self.eligibility.check_user_eligibility_for_user_task(
                session, task, member_id
            )
        if not eligibility.eligible:
            raise self.eligibility.map_reason_to_error(eligibility.reasons[0], task_id, member_id)

        membership = TaskMembership(
            task_id=task_id,
            member_id=member_id,
            is_team=is_team,
            approved=data.approved.value,
            deadline=as_naive_utc(data.deadline),
            email=data.email or "",
            phone=data.phone or "",
            apply_reason=data.apply_reason or "",
            personal_advantage=data.personal_advantage or "",
            remark=data.remark or "",
        )

        if is_team:
            try:
                entries, key_id = await self.snapshots.build_team_snapshot(task, member_id, members=roster)
            except Exception as exc:
                log.error("membership.team_snapshot_failed", task_id=str(task_id), error=str(exc))
                raise InternalServerError(
                    f"Failed to create team snapshot during participation: {exc}"
                ) from exc
            membership.replace_team_snapshot(entries)
            membership.encryption_key_id = key_id
        else:
            try:
                info, key_id = await self.snapshots.build_individual_snapshot(task, member_id)
            except BaseError:
                raise
            except Exception as exc:
                log.error("membership.real_name_snapshot_failed", task_id=str(task_id), error=str(exc))
                raise InternalServerError(f"Failed to prepare real name information: {exc}") from exc
            membership.set_real_name_info(info)
            membership.encryption_key_id = key_id

        try:
            await TaskMembershipRepository(session).save(membership)
        except IntegrityError as exc:
            # Lost a race against a concurrent join of the same member
            raise AlreadyBeTaskParticipantError(task_id, member_id) from exc
        log.info("membership.created", membership_id=str(membership.id), task_id=str(task_id))

        await self.eligibility.auto_reject_participant_after_reaches_limit(session, task_id)
        publish_after_commit(session, membership.id)

        return await self.views.get_task_membership_view(session, task_id, member_id)

    # ------------------------------------------------------------------
    # Update / approve
    # ------------------------------------------------------------------

    async def update_task_membership(
        self,
        session: AsyncSession,
        patch: TaskMembershipUpdate,
        *,
        membership_id: Optional[uuid.UUID] = None,
        task_id: Optional[uuid.UUID] = None,
        member_id: Optional[uuid.UUID] = None,
    ) -> TaskMembershipRead:
        """Patch a membership, addressed by id or by (task, member)."""
        membership = await self._get_membership(session, membership_id, task_id, member_id)
        task = await TaskRepository(session).get_or_404(membership.task_id)
        previous = membership.approved
        approving = patch.approved == ApproveType.APPROVED and previous != ApproveType.APPROVED

        if approving:
            await self.eligibility.ensure_task_participant_not_reached_limit(session, task.id)
            await self.eligibility.perform_pre_approval_checks(task, membership.member_id, membership.is_team)

        if (
            patch.deadline is not None
            and previous != ApproveType.APPROVED
            and patch.approved != ApproveType.APPROVED
        ):
            raise BadRequestError(
                "Cannot set deadline for non-approved membership",
                {"taskId": task.id, "participantId": membership.id},
            )

        snapshot = None
        if approving and membership.is_team:
            log.info("membership.refreshing_team_snapshot", membership_id=str(membership.id))
            try:
                snapshot = await self.snapshots.build_team_snapshot(
                    task, membership.member_id, previous=membership.get_team_snapshot()
                )
            except Exception as exc:
                log.error("membership.team_snapshot_failed", membership_id=str(membership.id), error=str(exc))
                raise BadRequestError(f"Failed to prepare team snapshot during approval: {exc}") from exc

        if patch.deadline is not None:
            membership.deadline = as_naive_utc(patch.deadline)
        if patch.approved is not None:
            membership.approved = patch.approved.value
        if snapshot is not None:
            entries, key_id = snapshot
            membership.replace_team_snapshot(entries)
            membership.encryption_key_id = key_id

        await TaskMembershipRepository(session).save(membership)
        publish_after_commit(session, membership.id)
        log.info(
            "membership.updated",
            membership_id=str(membership.id),
            approved=membership.approved,
        )

        if approving:
            await self.eligibility.auto_reject_participant_after_reaches_limit(session, task.id)

        return await self.views.get_task_membership_view(session, task.id, membership.member_id)

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    async def remove_task_participant(
        self, session: AsyncSession, task_id: uuid.UUID, membership_id: uuid.UUID
    ) -> None:
        membership = await self._get_membership(session, membership_id=membership_id)
        if membership.task_id != task_id:
            raise BadRequestError(
                f"Task ID mismatch for participant ID: {membership_id}",
                {"taskId": task_id, "participantId": membership_id},
            )
        membership.soft_delete()
        await TaskMembershipRepository(session).save(membership)
        log.info("membership.removed", membership_id=str(membership_id))

    async def remove_task_participant_by_member_id(
        self, session: AsyncSession, task_id: uuid.UUID, member_id: uuid.UUID
    ) -> None:
        membership = await self._get_membership(session, task_id=task_id, member_id=member_id)
        membership.soft_delete()
        await TaskMembershipRepository(session).save(membership)
        log.info("membership.removed", membership_id=str(membership.id), member_id=str(member_id))

"""
Read models for task memberships.

When a task requires real names, participant identities are masked: users
are shown only by their stable participant uuid and team members by their
snapshot uuid plus the decrypted snapshot.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.core.protocols import Collaborators, get_collaborators
from app.models.membership import TaskMembership
from app.models.task import Task
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.tasks import TaskRepository
from app.services.errors import NotTaskParticipantYetError
from app.services.snapshots import RealNameSnapshotManager
from taskhub_shared.schemas.common import (
    ApproveType,
    TaskCompletionStatus,
    TaskSubmitterType,
    parse_enum,
)
from taskhub_shared.schemas.directory import TeamSummary, UserSummary
from taskhub_shared.schemas.memberships import (
    TaskMembershipRead,
    TaskParticipantSummary,
    TaskParticipationIdentity,
    TaskParticipationInfo,
    TeamParticipantMemberSummary,
)

log = structlog.get_logger()


class MembershipViewService:
    def __init__(
        self,
        collaborators: Optional[Collaborators] = None,
        snapshots: Optional[RealNameSnapshotManager] = None,
    ) -> None:
        self.collaborators = collaborators or get_collaborators()
        self.snapshots = snapshots or RealNameSnapshotManager(self.collaborators)

    # ------------------------------------------------------------------
    # Membership views
    # ------------------------------------------------------------------

    async def get_task_membership_view(
        self, session: AsyncSession, task_id: uuid.UUID, member_id: uuid.UUID
    ) -> TaskMembershipRead:
        task = await TaskRepository(session).get_or_404(task_id)
        membership = await TaskMembershipRepository(session).find_by_task_and_member(task_id, member_id)
        if membership is None:
            raise NotTaskParticipantYetError(task_id, member_id)
        views = await self._assemble(task, [membership])
        return views[0]

    async def list_task_membership_views(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
        approved: Optional[ApproveType] = None,
    ) -> List[TaskMembershipRead]:
        task = await TaskRepository(session).get_or_404(task_id)
        repo = TaskMembershipRepository(session)
        if approved is None:
            memberships = await repo.find_all_by_task(task_id)
        else:
            memberships = await repo.find_all_by_task_and_approved(task_id, approved)
        if not memberships:
            return []
        return await self._assemble(task, memberships)

    async def _assemble(
        self, task: Task, memberships: List[TaskMembership]
    ) -> List[TaskMembershipRead]:
        """Build views with one bulk lookup per directory."""
        masked = task.require_real_name
        users = self.collaborators.users
        teams = self.collaborators.teams

        user_ids = [m.member_id for m in memberships if not m.is_team]
        team_ids = [m.member_id for m in memberships if m.is_team]
        snapshot_user_ids = list(
            {e.member_id for m in memberships if m.is_team for e in m.get_team_snapshot()}
        )

        user_map: Dict[uuid.UUID, UserSummary] = {}
        if user_ids and not masked:
            user_map = await users.get_users(user_ids)
        team_map: Dict[uuid.UUID, TeamSummary] = await teams.get_team_summaries(team_ids) if team_ids else {}
        member_user_map: Dict[uuid.UUID, UserSummary] = {}
        if snapshot_user_ids and not masked:
            member_user_map = await users.get_users(snapshot_user_ids)

        owners: Dict[uuid.UUID, Optional[uuid.UUID]] = {}
        for team_id in team_ids:
            try:
                owners[team_id] = await teams.get_team_owner(team_id)
            except NotFoundError:
                owners[team_id] = None

        views: List[TaskMembershipRead] = []
        for membership in memberships:
            if membership.is_team:
                team = team_map.get(membership.member_id)
                if team is None:
                    raise NotFoundError("team", membership.member_id)
                summary = TaskParticipantSummary(
                    member_id=team.id,
                    is_team=True,
                    name=team.name,
                    intro="" if masked else team.intro,
                    participant_uuid=membership.participant_uuid,
                )
                team_members = await self._team_member_summaries(
                    membership, owners.get(membership.member_id), member_user_map, masked
                )
                real_name_info = None
            else:
                if masked:
                    summary = TaskParticipantSummary(
                        is_team=False, participant_uuid=membership.participant_uuid
                    )
                    real_name_info = await self.snapshots.get_real_name_info_from_membership(membership)
                else:
                    user = user_map.get(membership.member_id)
                    if user is None:
                        raise NotFoundError("user", membership.member_id)
                    summary = TaskParticipantSummary(
                        member_id=user.id,
                        is_team=False,
                        name=user.username,
                        participant_uuid=membership.participant_uuid,
                    )
                    real_name_info = None
                team_members = None

            views.append(
                TaskMembershipRead(
                    id=membership.id,
                    task_id=membership.task_id,
                    member=summary,
                    approved=parse_enum(ApproveType, membership.approved),
                    reject_reason=membership.reject_reason,
                    deadline=membership.deadline,
                    completion_status=parse_enum(TaskCompletionStatus, membership.completion_status),
                    email=membership.email,
                    phone=membership.phone,
                    apply_reason=membership.apply_reason,
                    personal_advantage=membership.personal_advantage,
                    remark=membership.remark,
                    real_name_info=real_name_info,
                    team_members=team_members,
                    created_at=membership.created_at,
                    updated_at=membership.updated_at,
                )
            )
        return views

    async def _team_member_summaries(
        self,
        membership: TaskMembership,
        owner_id: Optional[uuid.UUID],
        user_map: Dict[uuid.UUID, UserSummary],
        masked: bool,
    ) -> List[TeamParticipantMemberSummary]:
        snapshot = membership.get_team_snapshot()
        if not snapshot:
            log.warning("membership.empty_team_snapshot", membership_id=str(membership.id))
            return []

        summaries: List[TeamParticipantMemberSummary] = []
        for entry in snapshot:
            is_owner = entry.member_id == owner_id
            if masked:
                summaries.append(
                    TeamParticipantMemberSummary(
                        participant_member_uuid=entry.participant_member_uuid,
                        is_owner=is_owner,
                        real_name_info=await self.snapshots.get_real_name_info_for_team_member_snapshot(
                            membership, entry
                        ),
                    )
                )
            else:
                user = user_map.get(entry.member_id)
                summaries.append(
                    TeamParticipantMemberSummary(
                        member_id=entry.member_id,
                        name=user.username if user is not None else "",
                        participant_member_uuid=entry.participant_member_uuid,
                        is_owner=is_owner,
                    )
                )
        return summaries

    # ------------------------------------------------------------------
    # A single user's relation to a task
    # ------------------------------------------------------------------

    async def _team_memberships_of_user(
        self, session: AsyncSession, task: Task, user_id: uuid.UUID
    ) -> List[tuple[TeamSummary, TaskMembership]]:
        user_teams = await self.collaborators.teams.get_teams_of_user(user_id)
        memberships = await TaskMembershipRepository(session).find_all_by_task_and_members(
            task.id, [t.id for t in user_teams]
        )
        by_member = {m.member_id: m for m in memberships}
        return [(t, by_member[t.id]) for t in user_teams if t.id in by_member]

    async def get_user_participation_info(
        self, session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> TaskParticipationInfo:
        task = await TaskRepository(session).get_or_404(task_id)
        identities: List[TaskParticipationIdentity] = []

        if task.submitter_type == TaskSubmitterType.USER:
            membership = await TaskMembershipRepository(session).find_by_task_and_member(task_id, user_id)
            if membership is not None:
                identities.append(
                    TaskParticipationIdentity(
                        id=membership.id,
                        type=TaskSubmitterType.USER,
                        member_id=user_id,
                        can_submit=membership.approved == ApproveType.APPROVED,
                        approved=parse_enum(ApproveType, membership.approved),
                    )
                )
        else:
            for team, membership in await self._team_memberships_of_user(session, task, user_id):
                can_submit = (
                    membership.approved == ApproveType.APPROVED
                    and await self.collaborators.teams.is_team_at_least_admin(team.id, user_id)
                )
                identities.append(
                    TaskParticipationIdentity(
                        id=membership.id,
                        type=TaskSubmitterType.TEAM,
                        member_id=team.id,
                        team_name=team.name,
                        can_submit=can_submit,
                        approved=parse_enum(ApproveType, membership.approved),
                    )
                )

        return TaskParticipationInfo(identities=identities, has_participation=bool(identities))

    async def get_submittability(
        self, session: AsyncSession, task: Task, user_id: uuid.UUID
    ) -> tuple[bool, Optional[List[TeamSummary]]]:
        if task.submitter_type == TaskSubmitterType.USER:
            can_submit = await TaskMembershipRepository(session).exists_by_task_member_and_approved(
                task.id, user_id, ApproveType.APPROVED
            )
            return can_submit, None

        teams: List[TeamSummary] = []
        for team, membership in await self._team_memberships_of_user(session, task, user_id):
            if membership.approved != ApproveType.APPROVED:
                continue
            if await self.collaborators.teams.is_team_at_least_admin(team.id, user_id):
                teams.append(team)
        return bool(teams), teams

    async def get_joined(
        self, session: AsyncSession, task: Task, user_id: uuid.UUID
    ) -> tuple[bool, Optional[List[TeamSummary]]]:
        if task.submitter_type == TaskSubmitterType.USER:
            joined = await TaskMembershipRepository(session).exists_by_task_and_member(task.id, user_id)
            return joined, None
        teams = [team for team, _ in await self._team_memberships_of_user(session, task, user_id)]
        return bool(teams), teams

    async def get_user_deadline(
        self, session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[datetime]:
        """Deadline of the user's approved participation, if any."""
        task = await TaskRepository(session).get_or_404(task_id)
        membership: Optional[TaskMembership] = None
        if task.submitter_type == TaskSubmitterType.USER:
            membership = await TaskMembershipRepository(session).find_by_task_and_member(task_id, user_id)
        else:
            for _, candidate in await self._team_memberships_of_user(session, task, user_id):
                if candidate.approved == ApproveType.APPROVED:
                    membership = candidate
                    break
        if membership is None or membership.approved != ApproveType.APPROVED:
            return None
        return membership.deadline

    async def is_task_participant(
        self, session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> bool:
        task = await TaskRepository(session).get_or_404(task_id)
        joined, _ = await self.get_joined(session, task, user_id)
        return joined

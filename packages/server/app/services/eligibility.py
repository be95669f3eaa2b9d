"""
Eligibility rules for joining a task, individually or as a team.

Handles:
- Read-side checks that accumulate every blocking reason (never raise)
- Approval-time re-validation of team size and real-name completeness
- Participant limit enforcement and the limit-triggered auto-reject sweep
- Mapping a reason back to the typed error a write path raises

Only two conditions short-circuit: a task that does not accept the
submitter type, and a team that does not exist. Every other rule adds its
reason and evaluation continues.
"""

from __future__ import annotations

import uuid
from typing import Any, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.errors import BadRequestError, BaseError, ForbiddenError, NotFoundError
from app.core.protocols import Collaborators, get_collaborators
from app.models.task import Task
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.tasks import TaskRepository
from app.services.errors import (
    AlreadyBeTaskParticipantError,
    RealNameInfoRequiredError,
    TaskParticipantsReachedLimitError,
    TeamSizeNotEnoughError,
    TeamSizeTooLargeError,
    YourRankIsNotHighEnoughError,
    YourTeamMemberRankIsNotHighEnoughError,
)
from taskhub_shared.schemas.common import (
    ApproveType,
    EligibilityRejectReasonCode as Code,
    TaskSubmitterType,
)
from taskhub_shared.schemas.directory import TeamMember, TeamMemberRealNameStatus
from taskhub_shared.schemas.memberships import (
    EligibilityRejectReason,
    EligibilityStatus,
    ParticipationEligibility,
    TeamTaskEligibility,
)

log = structlog.get_logger()

AUTO_REJECT_REASON = "Automatically rejected: Task participant limit reached."


def _reason(code: Code, message: str, **details: Any) -> EligibilityRejectReason:
    return EligibilityRejectReason(code=code, message=message, details=details)


def _status(reasons: List[EligibilityRejectReason]) -> EligibilityStatus:
    return EligibilityStatus(eligible=not reasons, reasons=reasons)


class EligibilityEvaluator:
    """Evaluates who may join a task."""

    def __init__(
        self,
        collaborators: Optional[Collaborators] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.collaborators = collaborators or get_collaborators()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Read-side checks
    # ------------------------------------------------------------------

    async def check_user_eligibility_for_user_task(
        self, session: AsyncSession, task: Task, user_id: uuid.UUID
    ) -> EligibilityStatus:
        if not await self.collaborators.users.exists_user(user_id):
            return _status(
                [_reason(Code.USER_NOT_FOUND, "User not found or inactive.", userId=user_id)]
            )

        if task.submitter_type != TaskSubmitterType.USER:
            return _status(
                [
                    _reason(
                        Code.INDIVIDUAL_PARTICIPATION_NOT_ALLOWED,
                        "This task only accepts team participation.",
                        taskId=task.id,
                        userId=user_id,
                    )
                ]
            )

        memberships = TaskMembershipRepository(session)
        reasons: List[EligibilityRejectReason] = []

        if task.approved != ApproveType.APPROVED:
            reasons.append(
                _reason(Code.TASK_NOT_APPROVED, "Task is not approved yet.", taskId=task.id, userId=user_id)
            )

        limit_reason = await self._check_participant_limit(memberships, task, userId=user_id)
        if limit_reason is not None:
            reasons.append(limit_reason)

        if await memberships.exists_by_task_and_member(task.id, user_id):
            reasons.append(
                _reason(
                    Code.ALREADY_PARTICIPATING,
                    "You are already participating.",
                    taskId=task.id,
                    userId=user_id,
                )
            )

        if task.require_real_name and not await self.collaborators.identities.has_user_identity(user_id):
            reasons.append(
                _reason(
                    Code.USER_MISSING_REAL_NAME,
                    "Real name information is required.",
                    taskId=task.id,
                    userId=user_id,
                )
            )

        await self._check_rank(session, task, user_id, reasons)

        return _status(reasons)

    async def check_team_eligibility_for_team_task(
        self, session: AsyncSession, task: Task, team_id: uuid.UUID
    ) -> tuple[EligibilityStatus, Optional[List[TeamMember]], Optional[bool]]:
        """Evaluate a team against a team task.

        Returns the verdict together with the roster and the all-verified
        flag it was evaluated against, so callers do not fetch them again.
        Both are None when evaluation stopped early.
        """
        reasons: List[EligibilityRejectReason] = []

        if task.submitter_type != TaskSubmitterType.TEAM:
            reasons.append(
                _reason(
                    Code.TEAM_PARTICIPATION_NOT_ALLOWED,
                    "This task only accepts individual participation.",
                    taskId=task.id,
                    teamId=team_id,
                )
            )
            return _status(reasons), None, None

        if task.approved != ApproveType.APPROVED:
            reasons.append(
                _reason(Code.TASK_NOT_APPROVED, "Task is not approved yet.", taskId=task.id, teamId=team_id)
            )

        teams = self.collaborators.teams
        if not await teams.exists_team(team_id):
            reasons.append(_reason(Code.TEAM_NOT_FOUND, "Team not found.", taskId=task.id, teamId=team_id))
            return _status(reasons), None, None

        memberships = TaskMembershipRepository(session)

        limit_reason = await self._check_participant_limit(memberships, task, teamId=team_id)
        if limit_reason is not None:
            reasons.append(limit_reason)

        if await memberships.exists_by_task_and_member(task.id, team_id):
            reasons.append(
                _reason(
                    Code.ALREADY_PARTICIPATING,
                    "This team is already participating.",
                    taskId=task.id,
                    teamId=team_id,
                )
            )

        members, all_verified = await teams.get_team_members(
            team_id, query_real_name_status=task.require_real_name
        )
        team_size = len(members)

        if task.min_team_size is not None and team_size < task.min_team_size:
            reasons.append(
                _reason(
                    Code.TEAM_SIZE_MIN_NOT_MET,
                    f"Team size ({team_size}) < minimum ({task.min_team_size}).",
                    taskId=task.id,
                    teamId=team_id,
                    actualSize=team_size,
                    requiredSize=task.min_team_size,
                )
            )
        if task.max_team_size is not None and team_size > task.max_team_size:
            reasons.append(
                _reason(
                    Code.TEAM_SIZE_MAX_EXCEEDED,
                    f"Team size ({team_size}) > maximum ({task.max_team_size}).",
                    taskId=task.id,
                    teamId=team_id,
                    actualSize=team_size,
                    requiredSize=task.max_team_size,
                )
            )

        if task.require_real_name and all_verified is not True:
            missing = [m.user.id for m in members if m.has_real_name_info is not True]
            reasons.append(
                _reason(
                    Code.TEAM_MEMBER_MISSING_REAL_NAME,
                    "One or more team members missing real name info.",
                    taskId=task.id,
                    teamId=team_id,
                    missingUserIds=missing,
                )
            )

        for member in members:
            await self._check_rank(session, task, member.user.id, reasons, member=member)

        return _status(reasons), members, all_verified

    async def get_participation_eligibility(
        self, session: AsyncSession, task: Task, user_id: uuid.UUID
    ) -> ParticipationEligibility:
        if task.submitter_type == TaskSubmitterType.USER:
            status = await self.check_user_eligibility_for_user_task(session, task, user_id)
            return ParticipationEligibility(user=status)

        candidates = await self.collaborators.teams.get_teams_that_user_can_use_to_join_task(
            task.id, user_id
        )
        results: List[TeamTaskEligibility] = []
        for team in candidates:
            status, members, all_verified = await self.check_team_eligibility_for_team_task(
                session, task, team.id
            )
            annotated = team.model_copy(
                update={
                    "all_members_verified": all_verified,
                    "member_real_name_status": (
                        [
                            TeamMemberRealNameStatus(
                                member_id=m.user.id,
                                has_real_name_info=m.has_real_name_info is True,
                                member_name=m.user.nickname or m.user.username,
                            )
                            for m in members
                        ]
                        if members is not None
                        else None
                    ),
                }
            )
            results.append(TeamTaskEligibility(team=annotated, eligibility=status))
        return ParticipationEligibility(teams=results)

    # ------------------------------------------------------------------
    # Write-side gates
    # ------------------------------------------------------------------

    async def perform_pre_approval_checks(
        self, task: Task, member_id: uuid.UUID, is_team: bool
    ) -> None:
        """Re-validate size and real-name completeness right before approval.

        The roster may have changed since the member joined.
        """
        if is_team:
            members, all_verified = await self.collaborators.teams.get_team_members(
                member_id, query_real_name_status=task.require_real_name
            )
            size = len(members)
            if task.min_team_size is not None and size < task.min_team_size:
                raise BadRequestError(
                    f"Cannot approve: Team size ({size}) is below minimum "
                    f"({task.min_team_size}) at time of approval.",
                    {"actualSize": size, "requiredSize": task.min_team_size},
                )
            if task.max_team_size is not None and size > task.max_team_size:
                raise BadRequestError(
                    f"Cannot approve: Team size ({size}) exceeds maximum "
                    f"({task.max_team_size}) at time of approval.",
                    {"actualSize": size, "requiredSize": task.max_team_size},
                )
            if task.require_real_name and all_verified is not True:
                missing = [m.user.id for m in members if m.has_real_name_info is not True]
                raise BadRequestError(
                    "Cannot approve: Following team members lack real name info: "
                    + ", ".join(str(m) for m in missing),
                    {"missingUserIds": missing},
                )
        elif task.require_real_name and not await self.collaborators.identities.has_user_identity(
            member_id
        ):
            raise BadRequestError(
                f"Cannot approve: User {member_id} is missing required real name information.",
                {"userId": member_id},
            )
        log.debug("membership.pre_approval_passed", task_id=str(task.id), member_id=str(member_id))

    async def ensure_task_participant_not_reached_limit(
        self, session: AsyncSession, task_id: uuid.UUID
    ) -> None:
        if not self.settings.enforce_task_participant_limit_check:
            return
        task = await TaskRepository(session).get_or_404(task_id)
        if task.participant_limit is None:
            return
        approved = await TaskMembershipRepository(session).count_by_task_and_approved(
            task_id, ApproveType.APPROVED
        )
        if approved >= task.participant_limit:
            raise TaskParticipantsReachedLimitError(task_id, task.participant_limit, approved)

    async def auto_reject_participant_after_reaches_limit(
        self, session: AsyncSession, task_id: uuid.UUID
    ) -> int:
        """Reject every pending membership once the approved count hits the limit.

        Runs in the caller's transaction. Returns how many were rejected.
        """
        if not self.settings.auto_reject_participant_after_reaches_limit:
            return 0
        task = await TaskRepository(session).get_or_404(task_id)
        if task.participant_limit is None:
            return 0

        memberships = TaskMembershipRepository(session)
        approved = await memberships.count_by_task_and_approved(task_id, ApproveType.APPROVED)
        if approved < task.participant_limit:
            return 0

        pending = await memberships.find_all_by_task_and_approved(task_id, ApproveType.NONE)
        if not pending:
            return 0

        for membership in pending:
            membership.approved = ApproveType.DISAPPROVED.value
            membership.reject_reason = AUTO_REJECT_REASON
        await memberships.save_all(pending)
        log.info(
            "membership.auto_rejected",
            task_id=str(task_id),
            limit=task.participant_limit,
            rejected=len(pending),
        )
        return len(pending)

    def map_reason_to_error(
        self,
        reason: EligibilityRejectReason,
        task_id: Optional[uuid.UUID] = None,
        member_id: Optional[uuid.UUID] = None,
    ) -> BaseError:
        details = reason.details or {}
        task_id = task_id or details.get("taskId")
        member_id = member_id or details.get("memberId")

        if reason.code == Code.ALREADY_PARTICIPATING:
            if task_id is not None and member_id is not None:
                return AlreadyBeTaskParticipantError(task_id, member_id)
            return ForbiddenError(reason.message, details)
        if reason.code == Code.PARTICIPANT_LIMIT_REACHED:
            if task_id is not None:
                return TaskParticipantsReachedLimitError(
                    task_id, details.get("limit", 0), details.get("actual", 0)
                )
            return ForbiddenError(reason.message, details)
        if reason.code == Code.USER_NOT_FOUND:
            return NotFoundError("user", details.get("userId") or member_id)
        if reason.code == Code.TEAM_NOT_FOUND:
            return NotFoundError("team", details.get("teamId") or member_id)
        if reason.code == Code.USER_RANK_NOT_HIGH_ENOUGH:
            return YourRankIsNotHighEnoughError(
                details.get("actualRank", 0), details.get("requiredRank", 0)
            )
        if reason.code == Code.TEAM_MEMBER_RANK_NOT_HIGH_ENOUGH:
            return YourTeamMemberRankIsNotHighEnoughError(
                details.get("userId"), details.get("actualRank", 0), details.get("requiredRank", 0)
            )
        if reason.code == Code.USER_MISSING_REAL_NAME:
            return RealNameInfoRequiredError(details.get("userId") or member_id)
        if reason.code == Code.TEAM_MEMBER_MISSING_REAL_NAME:
            missing = details.get("missingUserIds") or []
            return RealNameInfoRequiredError(missing[0] if missing else None)
        if reason.code == Code.TEAM_SIZE_MIN_NOT_MET:
            return TeamSizeNotEnoughError(details.get("actualSize", 0), details.get("requiredSize", 0))
        if reason.code == Code.TEAM_SIZE_MAX_EXCEEDED:
            return TeamSizeTooLargeError(details.get("actualSize", 0), details.get("requiredSize", 0))
        return ForbiddenError(reason.message, details)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_participant_limit(
        self, memberships: TaskMembershipRepository, task: Task, **subject: Any
    ) -> Optional[EligibilityRejectReason]:
        if not self.settings.enforce_task_participant_limit_check or task.participant_limit is None:
            return None
        approved = await memberships.count_by_task_and_approved(task.id, ApproveType.APPROVED)
        if approved < task.participant_limit:
            return None
        return _reason(
            Code.PARTICIPANT_LIMIT_REACHED,
            f"Task participant limit ({task.participant_limit}) reached.",
            taskId=task.id,
            limit=task.participant_limit,
            actual=approved,
            **subject,
        )

    async def _check_rank(
        self,
        session: AsyncSession,
        task: Task,
        user_id: uuid.UUID,
        reasons: List[EligibilityRejectReason],
        member: Optional[TeamMember] = None,
    ) -> None:
        """Rank rule for a user, or for one member of a team roster."""
        if not self.settings.rank_check_enforced or task.rank is None:
            return
        space = await TaskRepository(session).get_space(task.space_id)
        if space is None or not space.enable_rank:
            return
        required = task.rank - self.settings.rank_jump
        if required <= 0:
            return

        actual = await self.collaborators.ranks.get_rank(task.space_id, user_id)
        if actual >= required:
            return

        if member is None:
            code = Code.USER_RANK_NOT_HIGH_ENOUGH
            message = f"Your rank ({actual}) is not high enough. Required: {required}."
        else:
            code = Code.TEAM_MEMBER_RANK_NOT_HIGH_ENOUGH
            message = (
                f"Team member {member.user.username}'s rank ({actual}) is not high enough. "
                f"Required: {required}."
            )
        reasons.append(
            _reason(
                code,
                message,
                taskId=task.id,
                userId=user_id,
                actualRank=actual,
                requiredRank=required,
            )
        )

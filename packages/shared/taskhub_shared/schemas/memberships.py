"""Task membership schemas shared between the server core and its callers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, UUID4

from .common import (
    ApproveType,
    EligibilityRejectReasonCode,
    TaskCompletionStatus,
    TaskSubmitterType,
)
from .directory import TeamSummary


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

class EligibilityRejectReason(BaseModel):
    code: EligibilityRejectReasonCode
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EligibilityStatus(BaseModel):
    eligible: bool
    reasons: List[EligibilityRejectReason] = Field(default_factory=list)


class TeamTaskEligibility(BaseModel):
    team: TeamSummary
    eligibility: EligibilityStatus


class ParticipationEligibility(BaseModel):
    """Exactly one of ``user`` / ``teams`` is set, depending on the task's submitter type."""
    user: Optional[EligibilityStatus] = None
    teams: Optional[List[TeamTaskEligibility]] = None


# ---------------------------------------------------------------------------
# Membership CRUD
# ---------------------------------------------------------------------------

class TaskMembershipCreate(BaseModel):
    member_id: UUID4
    deadline: Optional[datetime] = None
    approved: ApproveType = ApproveType.NONE
    email: Optional[str] = None
    phone: Optional[str] = None
    apply_reason: Optional[str] = None
    personal_advantage: Optional[str] = None
    remark: Optional[str] = None


class TaskMembershipUpdate(BaseModel):
    deadline: Optional[datetime] = None
    approved: Optional[ApproveType] = None


class TaskParticipantRealNameInfo(BaseModel):
    """Decrypted real-name data as shown to task administrators."""
    real_name: str = ""
    student_id: str = ""
    grade: str = ""
    major: str = ""
    class_name: str = ""


class TaskParticipantSummary(BaseModel):
    """Who a membership belongs to.

    For tasks that require real names, user identities are masked and the
    stable ``participant_uuid`` is the only handle shown.
    """
    member_id: Optional[UUID4] = None
    is_team: bool
    name: str = ""
    intro: str = ""
    participant_uuid: UUID4


class TeamParticipantMemberSummary(BaseModel):
    member_id: Optional[UUID4] = None
    name: str = ""
    participant_member_uuid: Optional[UUID4] = None
    is_owner: bool = False
    real_name_info: Optional[TaskParticipantRealNameInfo] = None


class TaskMembershipRead(BaseModel):
    id: UUID4
    task_id: UUID4
    member: TaskParticipantSummary
    approved: ApproveType
    reject_reason: Optional[str] = None
    deadline: Optional[datetime] = None
    completion_status: TaskCompletionStatus
    email: str = ""
    phone: str = ""
    apply_reason: str = ""
    personal_advantage: str = ""
    remark: str = ""
    real_name_info: Optional[TaskParticipantRealNameInfo] = None
    team_members: Optional[List[TeamParticipantMemberSummary]] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Participation of a single user
# ---------------------------------------------------------------------------

class TaskParticipationIdentity(BaseModel):
    id: UUID4
    type: TaskSubmitterType
    member_id: UUID4
    team_name: Optional[str] = None
    can_submit: bool
    approved: ApproveType


class TaskParticipationInfo(BaseModel):
    identities: List[TaskParticipationIdentity] = Field(default_factory=list)
    has_participation: bool = False


# ---------------------------------------------------------------------------
# Snapshot maintenance
# ---------------------------------------------------------------------------

class SnapshotCreationResult(BaseModel):
    memberships_checked: int = 0
    memberships_updated: int = 0
    snapshot_entries_created: int = 0
    errors_encountered: int = 0

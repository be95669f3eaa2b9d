"""Task membership model: one participation record per (task, member)."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from taskhub_shared.schemas.common import ApproveType, TaskCompletionStatus

from .base import JSONType, SoftDeleteMixin, TimestampMixin, UUIDMixin
from .real_name import RealNameInfo, TeamMemberRealNameInfo


class TaskMembership(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "task_memberships"
    __table_args__ = (
        sa.Index(
            "uq_task_memberships_task_member_active",
            "task_id",
            "member_id",
            unique=True,
            postgresql_where=sa.text("deleted_at IS NULL"),
            sqlite_where=sa.text("deleted_at IS NULL"),
        ),
    )

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    member_id: uuid.UUID = Field(nullable=False, index=True)  # user id or team id
    is_team: bool = Field(default=False, nullable=False)
    approved: str = Field(nullable=False, default=ApproveType.NONE.value)
    reject_reason: Optional[str] = None
    deadline: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    completion_status: str = Field(
        nullable=False, default=TaskCompletionStatus.NOT_SUBMITTED.value, index=True
    )
    email: str = Field(default="", nullable=False)
    phone: str = Field(default="", nullable=False)
    apply_reason: str = Field(default="", nullable=False)
    personal_advantage: str = Field(default="", nullable=False)
    remark: str = Field(default="", nullable=False)
    participant_uuid: uuid.UUID = Field(default_factory=uuid.uuid4, nullable=False)
    real_name_info: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSONType)
    team_members_real_name_info: List[Dict[str, Any]] = Field(
        default_factory=list, sa_type=JSONType
    )
    encryption_key_id: Optional[str] = None

    # Snapshot columns hold plain JSON. Always assign whole values through the
    # accessors below; in-place edits to the list are not tracked.

    def get_real_name_info(self) -> Optional[RealNameInfo]:
        if self.real_name_info is None:
            return None
        return RealNameInfo.model_validate(self.real_name_info)

    def set_real_name_info(self, info: Optional[RealNameInfo]) -> None:
        self.real_name_info = info.model_dump(mode="json") if info is not None else None

    def get_team_snapshot(self) -> list[TeamMemberRealNameInfo]:
        return [TeamMemberRealNameInfo.model_validate(e) for e in self.team_members_real_name_info or []]

    def replace_team_snapshot(self, entries: list[TeamMemberRealNameInfo]) -> None:
        self.team_members_real_name_info = [e.model_dump(mode="json") for e in entries]

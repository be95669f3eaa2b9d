"""Task model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from taskhub_shared.schemas.common import ApproveType, TaskSubmitterType

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    space_id: uuid.UUID = Field(foreign_key="spaces.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    submitter_type: str = Field(nullable=False, default=TaskSubmitterType.USER.value)  # user | team
    approved: str = Field(nullable=False, default=ApproveType.NONE.value)  # none | approved | disapproved
    participant_limit: Optional[int] = None
    min_team_size: Optional[int] = None
    max_team_size: Optional[int] = None
    require_real_name: bool = Field(default=False, nullable=False)
    rank: Optional[int] = None
    resubmittable: bool = Field(default=True, nullable=False)

    @property
    def is_team_task(self) -> bool:
        return self.submitter_type == TaskSubmitterType.TEAM

"""Real-name snapshot value objects stored inside task memberships."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RealNameInfo(BaseModel):
    """Identity fields as stored on a membership.

    When ``encrypted`` is set every field holds ciphertext produced under the
    membership's ``encryption_key_id``.
    """

    model_config = ConfigDict(frozen=True)

    real_name: Optional[str] = None
    student_id: Optional[str] = None
    grade: Optional[str] = None
    major: Optional[str] = None
    class_name: Optional[str] = None
    encrypted: bool = False

    @property
    def has_content(self) -> bool:
        return any((self.real_name, self.student_id, self.grade, self.major, self.class_name))


# Snapshot that exists but carries no identity data
DEFAULT_REAL_NAME_INFO = RealNameInfo(
    real_name="", student_id="", grade="", major="", class_name="", encrypted=False
)


class TeamMemberRealNameInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    member_id: uuid.UUID
    real_name_info: RealNameInfo = DEFAULT_REAL_NAME_INFO
    participant_member_uuid: uuid.UUID = Field(default_factory=uuid.uuid4)

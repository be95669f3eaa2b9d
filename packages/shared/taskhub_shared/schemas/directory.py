"""Schemas for data owned by the user, team and identity services.

The participation core only reads these; the services that own them live
outside this repository.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, UUID4


class UserSummary(BaseModel):
    id: UUID4
    username: str
    nickname: str = ""


class UserIdentity(BaseModel):
    """A user's verified real-identity record, in plaintext."""
    real_name: str
    student_id: str
    grade: str
    major: str
    class_name: str


class TeamMember(BaseModel):
    user: UserSummary
    role: str = "member"  # owner | admin | member
    has_real_name_info: Optional[bool] = None  # None when not queried


class TeamMemberRealNameStatus(BaseModel):
    member_id: UUID4
    has_real_name_info: bool
    member_name: str


class TeamSummary(BaseModel):
    id: UUID4
    name: str
    intro: str = ""
    member_count: int = 0
    all_members_verified: Optional[bool] = None
    member_real_name_status: Optional[List[TeamMemberRealNameStatus]] = None

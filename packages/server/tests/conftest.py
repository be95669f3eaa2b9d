"""
Shared fixtures: an in-memory SQLite database, an in-process event bus and
in-memory stand-ins for the user, team, identity, encryption and rank
services.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Optional

os.environ.setdefault("TH_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TH_REDIS_URL", "redis://localhost:6379/15")

import pytest
from sqlalchemy.pool import StaticPool

from app.core.database import configure_database, dispose_engine, get_session_factory, init_db
from app.core.errors import NotFoundError
from app.core.events import InMemoryEventBus, set_event_bus
from app.core.protocols import Collaborators, set_collaborators
from app.models.membership import TaskMembership
from app.models.space import Space
from app.models.submission import TaskSubmission, TaskSubmissionReview
from app.models.task import Task
from taskhub_shared.schemas.common import ApproveType, KeyPurpose, TaskSubmitterType
from taskhub_shared.schemas.directory import TeamMember, TeamSummary, UserIdentity, UserSummary


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeUserDirectory:
    def __init__(self) -> None:
        self.users: dict[uuid.UUID, UserSummary] = {}

    def add(self, username: str, nickname: str = "") -> UserSummary:
        user = UserSummary(id=uuid.uuid4(), username=username, nickname=nickname)
        self.users[user.id] = user
        return user

    async def exists_user(self, user_id):
        return user_id in self.users

    async def get_user(self, user_id):
        try:
            return self.users[user_id]
        except KeyError:
            raise NotFoundError("user", user_id)

    async def get_users(self, user_ids):
        return {i: self.users[i] for i in user_ids if i in self.users}


class FakeIdentityProvider:
    def __init__(self) -> None:
        self.identities: dict[uuid.UUID, UserIdentity] = {}

    def verify(self, user: UserSummary, real_name: Optional[str] = None) -> UserIdentity:
        identity = UserIdentity(
            real_name=real_name or f"Real {user.username}",
            student_id=f"S-{user.username}",
            grade="2024",
            major="Computer Science",
            class_name="CS-1",
        )
        self.identities[user.id] = identity
        return identity

    async def get_user_identity(self, user_id):
        try:
            return self.identities[user_id]
        except KeyError:
            raise NotFoundError("user identity", user_id)

    async def has_user_identity(self, user_id):
        return user_id in self.identities


class FakeTeamDirectory:
    def __init__(self, identities: FakeIdentityProvider) -> None:
        self.identities = identities
        self.teams: dict[uuid.UUID, TeamSummary] = {}
        self.rosters: dict[uuid.UUID, list[tuple[UserSummary, str]]] = {}

    def add_team(self, name: str, members: list[UserSummary], admins=()) -> TeamSummary:
        """The first member owns the team."""
        team = TeamSummary(id=uuid.uuid4(), name=name, intro=f"{name} intro", member_count=len(members))
        self.teams[team.id] = team
        admin_ids = {a.id for a in admins}
        self.rosters[team.id] = [
            (user, "owner" if i == 0 else "admin" if user.id in admin_ids else "member")
            for i, user in enumerate(members)
        ]
        return team

    def add_member(self, team_id: uuid.UUID, user: UserSummary, role: str = "member") -> None:
        self.rosters[team_id].append((user, role))

    def remove_member(self, team_id: uuid.UUID, user_id: uuid.UUID) -> None:
        self.rosters[team_id] = [(u, r) for u, r in self.rosters[team_id] if u.id != user_id]

    async def exists_team(self, team_id):
        return team_id in self.teams

    async def get_team_members(self, team_id, query_real_name_status=False):
        members = [
            TeamMember(
                user=user,
                role=role,
                has_real_name_info=(user.id in self.identities.identities)
                if query_real_name_status
                else None,
            )
            for user, role in self.rosters.get(team_id, [])
        ]
        if not query_real_name_status:
            return members, None
        return members, all(m.has_real_name_info for m in members)

    async def get_team_owner(self, team_id):
        for user, role in self.rosters.get(team_id, []):
            if role == "owner":
                return user.id
        raise NotFoundError("team", team_id)

    async def get_teams_that_user_can_use_to_join_task(self, task_id, user_id):
        return [self.teams[t] for t in self.teams if await self.is_team_at_least_admin(t, user_id)]

    async def get_teams_of_user(self, user_id):
        return [
            self.teams[t]
            for t, roster in self.rosters.items()
            if any(u.id == user_id for u, _ in roster)
        ]

    async def is_team_at_least_admin(self, team_id, user_id):
        return any(
            u.id == user_id and r in ("owner", "admin") for u, r in self.rosters.get(team_id, [])
        )

    async def get_team_summaries(self, team_ids):
        return {t: self.teams[t] for t in team_ids if t in self.teams}


class FakeEncryptionProvider:
    """Reversible tagging instead of real ciphers."""

    def __init__(self) -> None:
        self.keys: dict[tuple[KeyPurpose, uuid.UUID], str] = {}

    async def get_or_create_key(self, purpose, scope):
        return self.keys.setdefault((purpose, scope), f"{purpose.value}:{scope}")

    async def encrypt(self, value, key_id):
        return f"enc[{key_id}]:{value}"

    async def decrypt(self, value, key_id):
        prefix = f"enc[{key_id}]:"
        if not value.startswith(prefix):
            raise ValueError(f"Value was not encrypted under {key_id}")
        return value[len(prefix):]


class FakeRankLedger:
    def __init__(self) -> None:
        self.ranks: dict[tuple[uuid.UUID, uuid.UUID], int] = {}

    def set_rank(self, space_id, user_id, rank: int) -> None:
        self.ranks[(space_id, user_id)] = rank

    async def get_rank(self, space_id, user_id):
        return self.ranks.get((space_id, user_id), 0)

    async def upgrade_rank(self, space_id, user_id, target_rank):
        if await self.get_rank(space_id, user_id) >= target_rank:
            return False
        self.ranks[(space_id, user_id)] = target_rank
        return True


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
async def database():
    """Fresh in-memory database per test."""
    engine = configure_database(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db()
    yield engine
    await dispose_engine()


@pytest.fixture(autouse=True)
async def event_bus():
    bus = InMemoryEventBus()
    set_event_bus(bus)
    yield bus
    await bus.drain()
    set_event_bus(None)


@pytest.fixture
def collaborators():
    identities = FakeIdentityProvider()
    registry = Collaborators(
        teams=FakeTeamDirectory(identities),
        users=FakeUserDirectory(),
        identities=identities,
        encryption=FakeEncryptionProvider(),
        ranks=FakeRankLedger(),
    )
    set_collaborators(registry)
    yield registry
    set_collaborators(None)


@pytest.fixture
async def session(database):
    async with get_session_factory()() as s:
        yield s


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


@pytest.fixture
async def space(session):
    row = Space(name="Algorithms", enable_rank=True)
    session.add(row)
    await session.commit()
    return row


@pytest.fixture
def make_task(session, space):
    async def _make(**overrides) -> Task:
        fields = {
            "space_id": space.id,
            "name": "Implement a trie",
            "submitter_type": TaskSubmitterType.USER.value,
            "approved": ApproveType.APPROVED.value,
        }
        fields.update(overrides)
        task = Task(**fields)
        session.add(task)
        await session.commit()
        return task

    return _make


@pytest.fixture
def make_membership(session):
    async def _make(task: Task, member_id: uuid.UUID, **overrides) -> TaskMembership:
        fields = {
            "task_id": task.id,
            "member_id": member_id,
            "is_team": task.submitter_type == TaskSubmitterType.TEAM,
            "email": "member@example.com",
        }
        fields.update(overrides)
        membership = TaskMembership(**fields)
        session.add(membership)
        await session.commit()
        return membership

    return _make


@pytest.fixture
def make_submission(session):
    async def _make(
        membership: TaskMembership,
        version: int = 1,
        created_at: Optional[datetime] = None,
        review: Optional[bool] = None,
    ) -> TaskSubmission:
        submission = TaskSubmission(
            membership_id=membership.id,
            version=version,
            submitter_id=membership.member_id,
        )
        if created_at is not None:
            submission.created_at = created_at
        session.add(submission)
        await session.flush()
        if review is not None:
            session.add(
                TaskSubmissionReview(submission_id=submission.id, accepted=review, score=80 if review else 20)
            )
        await session.commit()
        return submission

    return _make

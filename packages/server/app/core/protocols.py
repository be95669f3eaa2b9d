"""
Interfaces of the services the participation core consumes but does not own.

Users, teams, verified identities, encryption keys and per-space ranks live
in other services. The hosting application wires concrete clients in with
``set_collaborators`` at startup.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol

from taskhub_shared.schemas.common import KeyPurpose
from taskhub_shared.schemas.directory import TeamMember, TeamSummary, UserIdentity, UserSummary

if TYPE_CHECKING:
    from app.core.events import MembershipStatusChanged


class TeamDirectory(Protocol):
    async def exists_team(self, team_id: uuid.UUID) -> bool:
        ...

    async def get_team_members(
        self, team_id: uuid.UUID, query_real_name_status: bool = False
    ) -> tuple[list[TeamMember], Optional[bool]]:
        """Current roster, plus whether every member is verified.

        The flag is None unless ``query_real_name_status`` was requested.
        """
        ...

    async def get_team_owner(self, team_id: uuid.UUID) -> uuid.UUID:
        """Raises NotFoundError for unknown teams."""
        ...

    async def get_teams_that_user_can_use_to_join_task(
        self, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[TeamSummary]:
        ...

    async def get_teams_of_user(self, user_id: uuid.UUID) -> list[TeamSummary]:
        ...

    async def is_team_at_least_admin(self, team_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        ...

    async def get_team_summaries(self, team_ids: list[uuid.UUID]) -> dict[uuid.UUID, TeamSummary]:
        ...


class UserDirectory(Protocol):
    async def exists_user(self, user_id: uuid.UUID) -> bool:
        ...

    async def get_user(self, user_id: uuid.UUID) -> UserSummary:
        """Raises NotFoundError for unknown users."""
        ...

    async def get_users(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, UserSummary]:
        ...


class IdentityProvider(Protocol):
    async def get_user_identity(self, user_id: uuid.UUID) -> UserIdentity:
        """Raises NotFoundError when the user has no verified identity."""
        ...

    async def has_user_identity(self, user_id: uuid.UUID) -> bool:
        ...


class EncryptionProvider(Protocol):
    async def get_or_create_key(self, purpose: KeyPurpose, scope: uuid.UUID) -> str:
        """Key id for (purpose, scope); repeated calls return the same id."""
        ...

    async def encrypt(self, value: str, key_id: str) -> str:
        ...

    async def decrypt(self, value: str, key_id: str) -> str:
        ...


class RankLedger(Protocol):
    async def get_rank(self, space_id: uuid.UUID, user_id: uuid.UUID) -> int:
        ...

    async def upgrade_rank(self, space_id: uuid.UUID, user_id: uuid.UUID, target_rank: int) -> bool:
        """Raise the user's rank to ``target_rank``; True if it went up."""
        ...


class EventBus(Protocol):
    """Post-commit "membership status changed" signal, at-least-once."""

    def subscribe(
        self, handler: Callable[["MembershipStatusChanged"], Awaitable[None]]
    ) -> None:
        ...

    async def publish(self, event: "MembershipStatusChanged") -> None:
        ...

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass
class Collaborators:
    teams: TeamDirectory
    users: UserDirectory
    identities: IdentityProvider
    encryption: EncryptionProvider
    ranks: RankLedger


_collaborators: Collaborators | None = None


def set_collaborators(collaborators: Collaborators | None) -> None:
    global _collaborators
    _collaborators = collaborators


def get_collaborators() -> Collaborators:
    if _collaborators is None:
        raise RuntimeError("Collaborators are not configured; call set_collaborators() at startup")
    return _collaborators

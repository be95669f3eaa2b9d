"""
Real-name snapshots stored on task memberships.

A snapshot freezes a participant's verified identity at join or approval
time so later edits to the identity record do not rewrite a task's history.
Identity fields are encrypted under a task-scoped key obtained from the
encryption provider; tasks that do not require real names get placeholder
entries with no key.

Handles:
- Encrypting and decrypting snapshot fields
- Building individual and team snapshots from live directory data
- Repairing the snapshots of one task
- Backfilling placeholder snapshots for legacy team memberships
"""

from __future__ import annotations

import time
import uuid
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings
from app.core.database import get_session_context
from app.core.errors import NotFoundError
from app.core.protocols import Collaborators, get_collaborators
from app.models.membership import TaskMembership
from app.models.real_name import DEFAULT_REAL_NAME_INFO, RealNameInfo, TeamMemberRealNameInfo
from app.models.task import Task
from app.repositories.memberships import TaskMembershipRepository
from app.repositories.tasks import TaskRepository
from app.services.errors import RealNameInfoRequiredError, TeamSizeNotEnoughError, TeamSizeTooLargeError
from taskhub_shared.schemas.common import KeyPurpose
from taskhub_shared.schemas.directory import TeamMember, UserIdentity
from taskhub_shared.schemas.memberships import SnapshotCreationResult, TaskParticipantRealNameInfo

log = structlog.get_logger()

_FIELDS = ("real_name", "student_id", "grade", "major", "class_name")


def to_participant_info(info: RealNameInfo) -> TaskParticipantRealNameInfo:
    return TaskParticipantRealNameInfo(**{f: getattr(info, f) or "" for f in _FIELDS})


class RealNameSnapshotManager:
    def __init__(
        self,
        collaborators: Optional[Collaborators] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.collaborators = collaborators or get_collaborators()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Field encryption
    # ------------------------------------------------------------------

    async def encrypt_real_name_info(self, identity: UserIdentity, key_id: str) -> RealNameInfo:
        """Encrypt each identity field independently under ``key_id``."""
        encryption = self.collaborators.encryption
        values = {f: await encryption.encrypt(getattr(identity, f), key_id) for f in _FIELDS}
        return RealNameInfo(**values, encrypted=True)

    async def _decrypt(self, info: RealNameInfo, key_id: str) -> TaskParticipantRealNameInfo:
        encryption = self.collaborators.encryption
        values = {
            f: await encryption.decrypt(getattr(info, f), key_id) if getattr(info, f) else ""
            for f in _FIELDS
        }
        return TaskParticipantRealNameInfo(**values)

    async def decrypt_user_real_name_info(
        self, info: RealNameInfo, key_id: str
    ) -> TaskParticipantRealNameInfo:
        return await self._decrypt(info, key_id)

    async def decrypt_team_member_real_name_info(
        self, info: RealNameInfo, key_id: str
    ) -> TaskParticipantRealNameInfo:
        return await self._decrypt(info, key_id)

    async def get_real_name_info_from_membership(
        self, membership: TaskMembership
    ) -> Optional[TaskParticipantRealNameInfo]:
        info = membership.get_real_name_info()
        if info is None:
            return None
        if info.encrypted and membership.encryption_key_id:
            return await self.decrypt_user_real_name_info(info, membership.encryption_key_id)
        if not info.encrypted and info.has_content:
            return to_participant_info(info)
        return None

    async def get_real_name_info_for_team_member_snapshot(
        self, membership: TaskMembership, entry: TeamMemberRealNameInfo
    ) -> TaskParticipantRealNameInfo:
        info = entry.real_name_info
        if info.encrypted and membership.encryption_key_id:
            return await self.decrypt_team_member_real_name_info(info, membership.encryption_key_id)
        if not info.encrypted and info.has_content:
            return to_participant_info(info)
        return to_participant_info(DEFAULT_REAL_NAME_INFO)

    # ------------------------------------------------------------------
    # Snapshot construction
    # ------------------------------------------------------------------

    async def _task_key(self, task_id: uuid.UUID) -> str:
        return await self.collaborators.encryption.get_or_create_key(KeyPurpose.TASK_REAL_NAME, task_id)

    async def _identity_or_required(self, task: Task, user_id: uuid.UUID) -> UserIdentity:
        try:
            return await self.collaborators.identities.get_user_identity(user_id)
        except NotFoundError:
            log.error("snapshot.identity_missing", task_id=str(task.id), user_id=str(user_id))
            raise RealNameInfoRequiredError(user_id)

    async def build_individual_snapshot(
        self, task: Task, user_id: uuid.UUID
    ) -> tuple[Optional[RealNameInfo], Optional[str]]:
        """Encrypted snapshot for a user, or ``(None, None)`` when not required."""
        if not task.require_real_name:
            return None, None
        identity = await self._identity_or_required(task, user_id)
        key_id = await self._task_key(task.id)
        return await self.encrypt_real_name_info(identity, key_id), key_id

    async def build_team_snapshot(
        self,
        task: Task,
        team_id: uuid.UUID,
        previous: Optional[List[TeamMemberRealNameInfo]] = None,
        members: Optional[List[TeamMember]] = None,
    ) -> tuple[List[TeamMemberRealNameInfo], Optional[str]]:
        """Snapshot the team's current roster.

        ``members`` is a roster the caller already fetched; without it the
        roster is loaded from the team directory. Entries of members already
        present in ``previous`` keep their ``participant_member_uuid``. The key
        id is returned only when some entry was encrypted.
        """
        if members is None:
            members, _ = await self.collaborators.teams.get_team_members(
                team_id, query_real_name_status=task.require_real_name
            )
        if not members and task.min_team_size is not None and task.min_team_size > 0:
            raise TeamSizeNotEnoughError(0, task.min_team_size)

        known = {e.member_id: e.participant_member_uuid for e in previous or []}
        key_id = await self._task_key(task.id) if task.require_real_name else None

        entries: List[TeamMemberRealNameInfo] = []
        for member in members:
            user_id = member.user.id
            if key_id is not None:
                identity = await self._identity_or_required(task, user_id)
                info = await self.encrypt_real_name_info(identity, key_id)
            else:
                info = DEFAULT_REAL_NAME_INFO
            entry_kwargs = {"member_id": user_id, "real_name_info": info}
            if user_id in known:
                entry_kwargs["participant_member_uuid"] = known[user_id]
            entries.append(TeamMemberRealNameInfo(**entry_kwargs))

        size = len(entries)
        if task.min_team_size is not None and size < task.min_team_size:
            raise TeamSizeNotEnoughError(size, task.min_team_size)
        if task.max_team_size is not None and size > task.max_team_size:
            raise TeamSizeTooLargeError(size, task.max_team_size)

        return entries, key_id if entries and key_id is not None else None

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    async def fix_real_name_info_for_task(self, session: AsyncSession, task_id: uuid.UUID) -> int:
        """Encrypt every snapshot of ``task_id`` that is missing or in plaintext.

        Runs in the caller's transaction and is idempotent: a second run
        changes nothing. Memberships whose identities cannot be found are
        logged and left untouched. Returns the number of memberships changed.
        """
        task = await TaskRepository(session).get_or_404(task_id)
        if not task.require_real_name:
            log.warning("snapshot.fix_skipped", task_id=str(task_id), reason="real name not required")
            return 0

        key_id = await self._task_key(task_id)
        repo = TaskMembershipRepository(session)
        memberships = await repo.find_all_by_task(task_id)
        log.info("snapshot.fix_started", task_id=str(task_id), memberships=len(memberships))

        changed: List[TaskMembership] = []
        for membership in memberships:
            try:
                if membership.is_team:
                    fixed = await self._fix_team_membership(membership, key_id)
                else:
                    fixed = await self._fix_individual_membership(membership, key_id)
            except Exception:
                log.exception("snapshot.fix_failed", membership_id=str(membership.id))
                continue
            if fixed:
                changed.append(membership)

        if changed:
            await repo.save_all(changed)
        log.info("snapshot.fix_finished", task_id=str(task_id), updated=len(changed))
        return len(changed)

    async def _fix_individual_membership(self, membership: TaskMembership, key_id: str) -> bool:
        info = membership.get_real_name_info()
        if info is not None and info.encrypted:
            return False
        try:
            identity = await self.collaborators.identities.get_user_identity(membership.member_id)
        except NotFoundError:
            log.error("snapshot.fix_identity_missing", user_id=str(membership.member_id))
            return False
        membership.set_real_name_info(await self.encrypt_real_name_info(identity, key_id))
        membership.encryption_key_id = key_id
        return True

    async def _fix_team_membership(self, membership: TaskMembership, key_id: str) -> bool:
        snapshot = membership.get_team_snapshot()
        if snapshot and all(e.real_name_info.encrypted for e in snapshot):
            return False

        members, _ = await self.collaborators.teams.get_team_members(membership.member_id)
        if not members:
            log.warning("snapshot.fix_empty_team", team_id=str(membership.member_id))
            return False

        known = {e.member_id: e.participant_member_uuid for e in snapshot}
        entries: List[TeamMemberRealNameInfo] = []
        for member in members:
            try:
                identity = await self.collaborators.identities.get_user_identity(member.user.id)
            except NotFoundError:
                log.error(
                    "snapshot.fix_team_skipped",
                    membership_id=str(membership.id),
                    missing_user_id=str(member.user.id),
                )
                return False
            entries.append(
                TeamMemberRealNameInfo(
                    member_id=member.user.id,
                    real_name_info=await self.encrypt_real_name_info(identity, key_id),
                    participant_member_uuid=known.get(member.user.id) or uuid.uuid4(),
                )
            )

        membership.replace_team_snapshot(entries)
        membership.encryption_key_id = key_id
        return True

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def create_missing_team_snapshots_for_all_tasks(
        self, session_factory: Optional[sessionmaker] = None
    ) -> SnapshotCreationResult:
        """Give every team membership with an empty snapshot placeholder entries.

        Pages are processed one after another and each page is saved in its
        own transaction. A page that cannot be fetched stops the sweep.
        """
        per_page = self.settings.snapshot_batch_size
        result = SnapshotCreationResult()
        started = time.monotonic()
        page = 1

        while True:
            try:
                async with get_session_context(session_factory) as session:
                    batch = await TaskMembershipRepository(session).find_page_by_is_team(
                        True, page=page, per_page=per_page
                    )
            except Exception:
                log.exception("snapshot.backfill_page_fetch_failed", page=page)
                result.errors_encountered += 1
                break

            if not batch.items:
                if page == 1:
                    log.info("snapshot.backfill_nothing_to_do")
                break

            to_update: List[TaskMembership] = []
            for membership in batch.items:
                if membership.team_members_real_name_info:
                    continue
                try:
                    members, _ = await self.collaborators.teams.get_team_members(membership.member_id)
                except Exception:
                    log.exception("snapshot.backfill_item_failed", membership_id=str(membership.id))
                    result.errors_encountered += 1
                    continue
                if not members:
                    log.warning(
                        "snapshot.backfill_empty_team",
                        team_id=str(membership.member_id),
                        membership_id=str(membership.id),
                    )
                entries = [TeamMemberRealNameInfo(member_id=m.user.id) for m in members]
                membership.replace_team_snapshot(entries)
                to_update.append(membership)
                result.snapshot_entries_created += len(entries)

            if to_update:
                try:
                    async with get_session_context(session_factory) as session:
                        for membership in to_update:
                            await session.merge(membership)
                    result.memberships_updated += len(to_update)
                    log.info("snapshot.backfill_page_saved", page=page, updated=len(to_update))
                except Exception:
                    log.exception("snapshot.backfill_page_save_failed", page=page)
                    result.errors_encountered += len(to_update)

            result.memberships_checked += len(batch.items)
            if not batch.has_next:
                break
            page += 1

        log.info(
            "snapshot.backfill_finished",
            duration_ms=int((time.monotonic() - started) * 1000),
            checked=result.memberships_checked,
            updated=result.memberships_updated,
            entries_created=result.snapshot_entries_created,
            errors=result.errors_encountered,
        )
        return result

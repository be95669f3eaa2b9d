"""
Task membership queries.

Every lookup ignores soft-deleted rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.membership import TaskMembership
from taskhub_shared.schemas.common import ApproveType, TaskCompletionStatus

from .pages import Page, offset_for


def _active():
    return select(TaskMembership).where(TaskMembership.deleted_at.is_(None))


class TaskMembershipRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, membership_id: uuid.UUID) -> Optional[TaskMembership]:
        membership = await self.session.get(TaskMembership, membership_id)
        if membership is None or membership.is_deleted:
            return None
        return membership

    async def find_by_task_and_member(
        self, task_id: uuid.UUID, member_id: uuid.UUID
    ) -> Optional[TaskMembership]:
        result = await self.session.execute(
            _active().where(
                TaskMembership.task_id == task_id,
                TaskMembership.member_id == member_id,
            )
        )
        return result.scalars().first()

    async def exists_by_task_and_member(self, task_id: uuid.UUID, member_id: uuid.UUID) -> bool:
        return await self.find_by_task_and_member(task_id, member_id) is not None

    async def exists_by_task_member_and_approved(
        self, task_id: uuid.UUID, member_id: uuid.UUID, approved: ApproveType
    ) -> bool:
        membership = await self.find_by_task_and_member(task_id, member_id)
        return membership is not None and membership.approved == approved

    async def count_by_task_and_approved(self, task_id: uuid.UUID, approved: ApproveType) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TaskMembership)
            .where(
                TaskMembership.task_id == task_id,
                TaskMembership.approved == approved.value,
                TaskMembership.deleted_at.is_(None),
            )
        )
        return result.scalar_one()

    async def find_all_by_task(self, task_id: uuid.UUID) -> List[TaskMembership]:
        result = await self.session.execute(
            _active().where(TaskMembership.task_id == task_id).order_by(TaskMembership.created_at)
        )
        return list(result.scalars().all())

    async def find_all_by_task_and_approved(
        self, task_id: uuid.UUID, approved: ApproveType
    ) -> List[TaskMembership]:
        result = await self.session.execute(
            _active()
            .where(
                TaskMembership.task_id == task_id,
                TaskMembership.approved == approved.value,
            )
            .order_by(TaskMembership.created_at)
        )
        return list(result.scalars().all())

    async def find_all_by_task_and_members(
        self, task_id: uuid.UUID, member_ids: Sequence[uuid.UUID]
    ) -> List[TaskMembership]:
        if not member_ids:
            return []
        result = await self.session.execute(
            _active().where(
                TaskMembership.task_id == task_id,
                TaskMembership.member_id.in_(list(member_ids)),
            )
        )
        return list(result.scalars().all())

    async def find_page_by_is_team(
        self, is_team: bool, page: int = 1, per_page: int = 50
    ) -> Page[TaskMembership]:
        stmt = (
            _active()
            .where(TaskMembership.is_team == is_team)
            .order_by(TaskMembership.created_at, TaskMembership.id)
        )
        return await self._page(stmt, page, per_page)

    async def find_page_by_completion_status_in_and_deadline_not_null(
        self,
        statuses: Iterable[TaskCompletionStatus],
        page: int = 1,
        per_page: int = 100,
        deadline_before: Optional[datetime] = None,
    ) -> Page[TaskMembership]:
        stmt = _active().where(
            TaskMembership.completion_status.in_([s.value for s in statuses]),
            TaskMembership.deadline.is_not(None),
        )
        if deadline_before is not None:
            stmt = stmt.where(TaskMembership.deadline <= deadline_before)
        stmt = stmt.order_by(TaskMembership.deadline, TaskMembership.id)
        return await self._page(stmt, page, per_page)

    async def save(self, membership: TaskMembership) -> TaskMembership:
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def save_all(self, memberships: Sequence[TaskMembership]) -> None:
        self.session.add_all(list(memberships))
        await self.session.flush()

    async def _page(self, stmt, page: int, per_page: int) -> Page[TaskMembership]:
        # One extra row tells whether another page follows
        result = await self.session.execute(
            stmt.offset(offset_for(page, per_page)).limit(per_page + 1)
        )
        rows = list(result.scalars().all())
        return Page(
            items=rows[:per_page],
            page=page,
            per_page=per_page,
            has_next=len(rows) > per_page,
        )

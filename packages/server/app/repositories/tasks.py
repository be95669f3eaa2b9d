"""Task and space lookups."""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.space import Space
from app.models.task import Task


class TaskRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, task_id: uuid.UUID) -> Optional[Task]:
        task = await self.session.get(Task, task_id)
        if task is None or task.is_deleted:
            return None
        return task

    async def get_or_404(self, task_id: uuid.UUID) -> Task:
        task = await self.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def get_space(self, space_id: uuid.UUID) -> Optional[Space]:
        return await self.session.get(Space, space_id)

"""Submissions against a membership and their reviews."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class TaskSubmission(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "task_submissions"

    membership_id: uuid.UUID = Field(foreign_key="task_memberships.id", nullable=False, index=True)
    version: int = Field(nullable=False, default=1)
    submitter_id: uuid.UUID = Field(nullable=False)


class TaskSubmissionReview(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "task_submission_reviews"
    __table_args__ = (
        sa.Index(
            "uq_task_submission_reviews_submission_active",
            "submission_id",
            unique=True,
            postgresql_where=sa.text("deleted_at IS NULL"),
            sqlite_where=sa.text("deleted_at IS NULL"),
        ),
    )

    submission_id: uuid.UUID = Field(foreign_key="task_submissions.id", nullable=False, index=True)
    accepted: bool = Field(nullable=False)
    score: int = Field(nullable=False)
    comment: str = Field(default="", nullable=False)

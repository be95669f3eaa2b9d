"""Space model. Only the fields task participation reads are mapped here."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Space(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "spaces"

    name: str = Field(nullable=False)
    enable_rank: bool = Field(default=False, nullable=False)

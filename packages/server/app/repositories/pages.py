"""Offset pagination result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, List, TypeVar

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    page: int = 1
    per_page: int = 25
    has_next: bool = False


def offset_for(page: int, per_page: int) -> int:
    return (page - 1) * per_page

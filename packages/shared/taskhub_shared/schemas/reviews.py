"""Submission review schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ReviewDetail(BaseModel):
    accepted: bool
    score: int
    comment: str


class ReviewRead(BaseModel):
    reviewed: bool
    detail: Optional[ReviewDetail] = None


"""
HTTP-aware error hierarchy.

Every error raised by the participation core is an ``HTTPException`` so the
hosting FastAPI app renders it without a translation layer. ``detail`` carries
the error name, a human readable message and structured ``data``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException


class BaseError(HTTPException):
    status_code: int = 500

    def __init__(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        self.name = type(self).__name__
        self.message = message
        self.data = data or {}
        super().__init__(
            status_code=type(self).status_code,
            detail={"name": self.name, "message": message, "data": self.data},
        )

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


class BadRequestError(BaseError):
    status_code = 400


class ForbiddenError(BaseError):
    status_code = 403


class NotFoundError(BaseError):
    status_code = 404

    def __init__(
        self,
        kind: str,
        id: Any,
        message: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or f"{kind} {id} not found", data or {"type": kind, "id": id})


class ConflictError(BaseError):
    status_code = 409


class InternalServerError(BaseError):
    status_code = 500

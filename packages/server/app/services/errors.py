"""Domain errors raised by the participation services."""

from __future__ import annotations

import uuid

from app.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)


class AlreadyBeTaskParticipantError(ConflictError):
    def __init__(self, task_id: uuid.UUID, member_id: uuid.UUID) -> None:
        super().__init__(
            f"Member {member_id} is already a participant of task {task_id}",
            {"taskId": task_id, "memberId": member_id},
        )


class TaskParticipantsReachedLimitError(ForbiddenError):
    def __init__(self, task_id: uuid.UUID, limit: int, actual: int) -> None:
        super().__init__(
            f"Task {task_id} has a limitation of {limit} for approved participants, "
            f"and it already has {actual} approved participants.",
            {"taskId": task_id, "limit": limit, "actual": actual},
        )


class YourRankIsNotHighEnoughError(ForbiddenError):
    def __init__(self, actual_rank: int, required_rank: int) -> None:
        super().__init__(
            f"Your rank ({actual_rank}) is not high enough. Required: {required_rank}.",
            {"actualRank": actual_rank, "requiredRank": required_rank},
        )


class YourTeamMemberRankIsNotHighEnoughError(ForbiddenError):
    def __init__(self, user_id: uuid.UUID, actual_rank: int, required_rank: int) -> None:
        super().__init__(
            f"Team member {user_id}'s rank ({actual_rank}) is not high enough. "
            f"Required: {required_rank}.",
            {"userId": user_id, "actualRank": actual_rank, "requiredRank": required_rank},
        )


class RealNameInfoRequiredError(ForbiddenError):
    def __init__(self, user_id: uuid.UUID | None) -> None:
        super().__init__(
            f"Real name information is required for user {user_id}",
            {"userId": user_id},
        )


class TeamSizeNotEnoughError(BadRequestError):
    def __init__(self, actual_size: int, required_size: int) -> None:
        super().__init__(
            f"Team size ({actual_size}) is below the minimum ({required_size})",
            {"actualSize": actual_size, "requiredSize": required_size},
        )


class TeamSizeTooLargeError(BadRequestError):
    def __init__(self, actual_size: int, required_size: int) -> None:
        super().__init__(
            f"Team size ({actual_size}) exceeds the maximum ({required_size})",
            {"actualSize": actual_size, "requiredSize": required_size},
        )


class EmailOrPhoneRequiredError(BadRequestError):
    def __init__(self, task_id: uuid.UUID, member_id: uuid.UUID) -> None:
        super().__init__(
            "Either email or phone is required to join a task",
            {"taskId": task_id, "memberId": member_id},
        )


class NotTaskParticipantYetError(NotFoundError):
    def __init__(self, task_id: uuid.UUID, member_id: uuid.UUID) -> None:
        super().__init__(
            "task participant",
            member_id,
            message=f"Member {member_id} is not a participant of task {task_id} yet",
            data={"taskId": task_id, "memberId": member_id},
        )


class TaskSubmissionAlreadyReviewedError(ConflictError):
    def __init__(self, submission_id: uuid.UUID) -> None:
        super().__init__(
            f"Task submission {submission_id} has already been reviewed",
            {"submissionId": submission_id},
        )


class TaskSubmissionNotReviewedYetError(NotFoundError):
    def __init__(self, submission_id: uuid.UUID) -> None:
        super().__init__(
            "task submission review",
            submission_id,
            message=f"Task submission {submission_id} has not been reviewed yet",
            data={"submissionId": submission_id},
        )

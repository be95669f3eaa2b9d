from enum import Enum
from typing import Type, TypeVar


class ApproveType(str, Enum):
    NONE = "none"
    APPROVED = "approved"
    DISAPPROVED = "disapproved"


class TaskSubmitterType(str, Enum):
    USER = "user"
    TEAM = "team"


class TaskCompletionStatus(str, Enum):
    NOT_SUBMITTED = "not_submitted"
    PENDING_REVIEW = "pending_review"
    REJECTED_RESUBMITTABLE = "rejected_resubmittable"
    SUCCESS = "success"
    FAILED = "failed"


# Statuses a passing deadline can still move to FAILED
DEADLINE_SENSITIVE_STATUSES: list[TaskCompletionStatus] = [
    TaskCompletionStatus.NOT_SUBMITTED,
    TaskCompletionStatus.PENDING_REVIEW,
    TaskCompletionStatus.REJECTED_RESUBMITTABLE,
]


class KeyPurpose(str, Enum):
    TASK_REAL_NAME = "task-real-name"


class EligibilityRejectReasonCode(str, Enum):
    USER_NOT_FOUND = "USER_NOT_FOUND"
    TEAM_NOT_FOUND = "TEAM_NOT_FOUND"
    INDIVIDUAL_PARTICIPATION_NOT_ALLOWED = "INDIVIDUAL_PARTICIPATION_NOT_ALLOWED"
    TEAM_PARTICIPATION_NOT_ALLOWED = "TEAM_PARTICIPATION_NOT_ALLOWED"
    TASK_NOT_APPROVED = "TASK_NOT_APPROVED"
    PARTICIPANT_LIMIT_REACHED = "PARTICIPANT_LIMIT_REACHED"
    ALREADY_PARTICIPATING = "ALREADY_PARTICIPATING"
    USER_MISSING_REAL_NAME = "USER_MISSING_REAL_NAME"
    TEAM_MEMBER_MISSING_REAL_NAME = "TEAM_MEMBER_MISSING_REAL_NAME"
    USER_RANK_NOT_HIGH_ENOUGH = "USER_RANK_NOT_HIGH_ENOUGH"
    TEAM_MEMBER_RANK_NOT_HIGH_ENOUGH = "TEAM_MEMBER_RANK_NOT_HIGH_ENOUGH"
    TEAM_SIZE_MIN_NOT_MET = "TEAM_SIZE_MIN_NOT_MET"
    TEAM_SIZE_MAX_EXCEEDED = "TEAM_SIZE_MAX_EXCEEDED"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: object) -> E:
    """Parse ``value`` into ``enum_cls`` by value or by member name.

    Raises ValueError for anything that is not a member, so unknown input
    never silently maps to a default.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value == value or member.name == value.upper():
                return member
    raise ValueError(f"Unknown {enum_cls.__name__} value: {value!r}")


# SQLModel definitions, imported here so create_all sees every table.
from .base import UUIDMixin, TimestampMixin, SoftDeleteMixin  # noqa: F401
from .space import Space  # noqa: F401
from .task import Task  # noqa: F401
from .membership import TaskMembership  # noqa: F401
from .submission import TaskSubmission, TaskSubmissionReview  # noqa: F401
from .real_name import DEFAULT_REAL_NAME_INFO, RealNameInfo, TeamMemberRealNameInfo  # noqa: F401

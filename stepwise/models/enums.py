from enum import Enum


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class StepType(str, Enum):
    CHECKLIST = "CHECKLIST"
    INPUT = "INPUT"
    DECISION = "DECISION"
    MANUAL = "MANUAL"
    APPROVAL = "APPROVAL"
    CALCULATION = "CALCULATION"
    NOTIFICATION = "NOTIFICATION"


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.CANCELLED, ExecutionStatus.FAILED}
)
ACTIVE_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.PENDING, ExecutionStatus.IN_PROGRESS, ExecutionStatus.PAUSED}
)


class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"



class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3, Priority.URGENT: 4}


class FileType(str, Enum):
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    TEXT = "TEXT"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    SPREADSHEET = "SPREADSHEET"
    PRESENTATION = "PRESENTATION"
    OTHER = "OTHER"

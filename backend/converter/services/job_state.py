"""Job lifecycle states and the legal transitions between them."""
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    CONVERTING = "converting"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.READY, JobStatus.FAILED, JobStatus.CANCELLED})

ACTIVE_STATUSES = frozenset({JobStatus.UPLOADING, JobStatus.CONVERTING})

# source -> allowed targets
TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.UPLOADING}),
    JobStatus.UPLOADING: frozenset({JobStatus.CONVERTING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.CONVERTING: frozenset({JobStatus.READY, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.READY: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, source: str, target: str):
        super().__init__(f"Cannot move job from '{source}' to '{target}'")
        self.source = source
        self.target = target


def is_terminal(status) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES


def can_transition(source, target) -> bool:
    return JobStatus(target) in TRANSITIONS[JobStatus(source)]


def sources_for(target) -> frozenset:
    """Return every status from which ``target`` may be entered."""
    target = JobStatus(target)
    return frozenset(src for src, targets in TRANSITIONS.items() if target in targets)


def ensure_transition(source, target) -> None:
    if not can_transition(source, target):
        raise InvalidTransition(JobStatus(source).value, JobStatus(target).value)

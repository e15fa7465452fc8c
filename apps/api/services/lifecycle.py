"""Audit job status state machine."""

from __future__ import annotations

from typing import Dict, FrozenSet

from services.errors import InvalidTransitionError

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

AUDIT_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({COMPLETED, FAILED})

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING}),
    PROCESSING: frozenset({COMPLETED, FAILED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, target: str) -> None:
    """Raise when `current -> target` is not a forward edge of the lifecycle."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)

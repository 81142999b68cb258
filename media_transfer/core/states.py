"""
Upload session state machine.

Persisted status is one of ``SessionStatus``. The protocol phase is finer
grained: ``CREATED``, ``RECEIVING`` and ``COMPLETING`` are all stored as
``IN_PROGRESS`` and told apart by progress (``COMPLETING`` only exists while
a finalize is running).
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from media_transfer.core.errors import InvalidTransition


class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


class UploadPhase(str, Enum):
    CREATED = "CREATED"
    RECEIVING = "RECEIVING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TRANSITIONS: Dict[UploadPhase, FrozenSet[UploadPhase]] = {
    UploadPhase.CREATED: frozenset({
        UploadPhase.RECEIVING,
        UploadPhase.COMPLETING,
        UploadPhase.CANCELLED,
        UploadPhase.FAILED,
    }),
    UploadPhase.RECEIVING: frozenset({
        UploadPhase.RECEIVING,
        UploadPhase.COMPLETING,
        UploadPhase.CANCELLED,
        UploadPhase.FAILED,
    }),
    # A failed commit drops back to RECEIVING so the finalize can be retried
    UploadPhase.COMPLETING: frozenset({
        UploadPhase.COMPLETED,
        UploadPhase.FAILED,
        UploadPhase.RECEIVING,
    }),
    UploadPhase.COMPLETED: frozenset(),
    UploadPhase.CANCELLED: frozenset(),
    UploadPhase.FAILED: frozenset(),
}

PHASE_STATUS: Dict[UploadPhase, SessionStatus] = {
    UploadPhase.CREATED: SessionStatus.IN_PROGRESS,
    UploadPhase.RECEIVING: SessionStatus.IN_PROGRESS,
    UploadPhase.COMPLETING: SessionStatus.IN_PROGRESS,
    UploadPhase.COMPLETED: SessionStatus.COMPLETED,
    UploadPhase.CANCELLED: SessionStatus.CANCELLED,
    UploadPhase.FAILED: SessionStatus.FAILED,
}


def phase_for(status: SessionStatus, bytes_received: int) -> UploadPhase:
    """Derive the protocol phase of a stored session."""
    if status is SessionStatus.IN_PROGRESS:
        return UploadPhase.RECEIVING if bytes_received > 0 else UploadPhase.CREATED
    return UploadPhase(status.value)


def can_transition(current: UploadPhase, target: UploadPhase) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: UploadPhase, target: UploadPhase) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move upload from {current.value} to {target.value}",
            {"from": current.value, "to": target.value},
        )


def check_status_change(current: SessionStatus, target: SessionStatus) -> None:
    """Persisted statuses only ever leave IN_PROGRESS."""
    if current.is_terminal:
        raise InvalidTransition(
            f"Session is already {current.value}",
            {"from": current.value, "to": target.value},
        )


def check_session_invariants(session, durable_size: Optional[int] = None) -> List[str]:
    """
    Return a list of violated invariants for a session snapshot.

    ``durable_size`` is what the storage backend reports for the session's
    handle (``None`` when unknown or missing).
    """
    problems = []
    if session.bytes_received < 0:
        problems.append("bytes_received is negative")
    if session.bytes_received > session.expected_size:
        problems.append("bytes_received exceeds expected_size")
    if durable_size is not None and session.bytes_received > durable_size:
        problems.append("bytes_received exceeds durable storage size")
    if session.status is SessionStatus.COMPLETED and session.bytes_received != session.expected_size:
        problems.append("completed session is missing bytes")
    return problems

from datetime import datetime

import pytest

from media_transfer.core.errors import InvalidTransition
from media_transfer.core.states import (
    SessionStatus,
    UploadPhase,
    can_transition,
    check_session_invariants,
    check_status_change,
    check_transition,
    phase_for,
)
from media_transfer.schemas import UploadSessionRecord

def make_record(**overrides):
    values = dict(
        id="abc",
        filename="clip.mp4",
        mime_type="video/mp4",
        expected_size=100,
        bytes_received=0,
        storage_handle="abc_clip.mp4",
        status=SessionStatus.IN_PROGRESS,
        created_at=datetime(2026, 1, 1),
        last_updated_at=datetime(2026, 1, 1),
    )
    values.update(overrides)
    return UploadSessionRecord(**values)

@pytest.mark.parametrize("terminal", [UploadPhase.COMPLETED, UploadPhase.CANCELLED, UploadPhase.FAILED])
def test_terminal_phases_have_no_exits(terminal):
    for target in UploadPhase:
        assert not can_transition(terminal, target)

def test_receiving_paths():
    assert can_transition(UploadPhase.CREATED, UploadPhase.RECEIVING)
    assert can_transition(UploadPhase.RECEIVING, UploadPhase.RECEIVING)
    assert can_transition(UploadPhase.RECEIVING, UploadPhase.COMPLETING)
    assert can_transition(UploadPhase.COMPLETING, UploadPhase.COMPLETED)
    # Failed commit goes back for a retry
    assert can_transition(UploadPhase.COMPLETING, UploadPhase.RECEIVING)
    assert not can_transition(UploadPhase.CREATED, UploadPhase.COMPLETED)
    assert not can_transition(UploadPhase.COMPLETING, UploadPhase.CANCELLED)

def test_check_transition_raises():
    with pytest.raises(InvalidTransition) as excinfo:
        check_transition(UploadPhase.COMPLETED, UploadPhase.RECEIVING)

    assert excinfo.value.detail == {"from": "COMPLETED", "to": "RECEIVING"}

def test_terminal_status_cannot_change():
    check_status_change(SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED)
    with pytest.raises(InvalidTransition):
        check_status_change(SessionStatus.CANCELLED, SessionStatus.IN_PROGRESS)

def test_phase_for():
    assert phase_for(SessionStatus.IN_PROGRESS, 0) is UploadPhase.CREATED
    assert phase_for(SessionStatus.IN_PROGRESS, 10) is UploadPhase.RECEIVING
    assert phase_for(SessionStatus.FAILED, 10) is UploadPhase.FAILED

def test_invariants_hold_for_consistent_session():
    assert check_session_invariants(make_record(bytes_received=40), durable_size=40) == []
    assert check_session_invariants(make_record(bytes_received=40), durable_size=60) == []

def test_invariants_flag_problems():
    assert check_session_invariants(make_record(bytes_received=50), durable_size=40) == [
        "bytes_received exceeds durable storage size",
    ]
    assert check_session_invariants(make_record(bytes_received=120)) == [
        "bytes_received exceeds expected_size",
    ]
    assert check_session_invariants(make_record(status=SessionStatus.COMPLETED, bytes_received=99)) == [
        "completed session is missing bytes",
    ]

def test_progress_percent():
    assert make_record(bytes_received=25).progress_percent == 25
    assert make_record(expected_size=0, status=SessionStatus.COMPLETED).progress_percent == 100

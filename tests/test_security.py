import pytest

from media_transfer.core.errors import AuthFailed, AuthRequired
from media_transfer.core.security import AccessGate, generate_pin

def test_disabled_gate_allows_everything():
    gate = AccessGate()

    assert gate.verify(None)
    gate.check("whatever")

def test_enabled_gate_checks_pin():
    gate = AccessGate(pin="4821", enabled=True)

    assert gate.verify("4821")
    assert gate.verify(" 4821 ")
    assert not gate.verify("1234")
    assert not gate.verify(None)

def test_auth_failed_is_auth_required():
    gate = AccessGate(pin="4821", enabled=True)

    with pytest.raises(AuthRequired) as excinfo:
        gate.check(None)
    assert isinstance(excinfo.value, AuthFailed)
    assert excinfo.value.status_code == 401

def test_rotation_invalidates_old_pin():
    gate = AccessGate(pin="4821", enabled=True)

    new_pin = gate.rotate("9999")

    assert new_pin == "9999"
    assert gate.verify("9999")
    assert not gate.verify("4821")

def test_rotate_generates_pin():
    gate = AccessGate()

    pin = gate.rotate()

    assert gate.enabled
    assert len(pin) == 4 and pin.isdigit()
    assert gate.verify(pin)

def test_enabled_without_pin_stays_open():
    gate = AccessGate(pin=None, enabled=True)

    assert not gate.enabled
    assert gate.verify(None)

def test_disable():
    gate = AccessGate(pin="4821", enabled=True)
    gate.disable()

    assert gate.verify(None)

def test_generate_pin_length():
    assert len(generate_pin(6)) == 6

import logging
import secrets
import threading
from typing import Optional

from media_transfer.core.errors import AuthFailed

logger = logging.getLogger("access_gate")


def generate_pin(length: int = 4) -> str:
    """
    Create a random numeric PIN, the kind shown on the headset for the
    sending device to type in.
    """
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class AccessGate:
    """
    Shared-secret (PIN) check for mutating requests.

    The PIN can be rotated at any time; the previous value stops working
    immediately. When the gate is disabled every request passes.
    """

    def __init__(self, pin: Optional[str] = None, enabled: bool = False):
        self._lock = threading.Lock()
        self._pin = pin
        self._enabled = enabled and bool(pin)
        if enabled and not pin:
            logger.warning("PIN protection requested without a PIN, gate stays disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def pin(self) -> Optional[str]:
        return self._pin

    def rotate(self, pin: Optional[str] = None) -> str:
        new_pin = pin or generate_pin()
        with self._lock:
            self._pin = new_pin
            self._enabled = True
        logger.info("Upload PIN rotated")
        return new_pin

    def disable(self) -> None:
        with self._lock:
            self._enabled = False
        logger.info("Upload PIN protection disabled")

    def verify(self, provided: Optional[str]) -> bool:
        with self._lock:
            enabled, pin = self._enabled, self._pin
        if not enabled:
            return True
        if not provided:
            return False
        return secrets.compare_digest(provided.strip().encode(), pin.encode())

    def check(self, provided: Optional[str]) -> None:
        """Raise ``AuthFailed`` unless ``provided`` matches the active PIN."""
        if self.verify(provided):
            return
        reason = "missing" if not provided else "mismatch"
        raise AuthFailed(
            "PIN required. Please enter the PIN shown on the headset.",
            {"reason": reason},
        )

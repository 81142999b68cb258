from typing import Optional

from fastapi import Request

SECRET_HEADER_ALIAS = "X-Upload-Secret"

def provided_pin(request: Request) -> Optional[str]:
    header = request.app.state.settings.PIN_HEADER
    return request.headers.get(header) or request.headers.get(SECRET_HEADER_ALIAS)

async def require_pin(request: Request) -> None:
    """
    Dependency gating every request that creates, changes or deletes an upload.
    Raises ``AuthFailed`` when the PIN gate is on and the header is missing or wrong.
    """
    request.app.state.access_gate.check(provided_pin(request))

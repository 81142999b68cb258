from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from media_transfer.api.dependencies import get_access_gate
from media_transfer.api.schemas import PinRequest, PinResponse
from media_transfer.core.security import AccessGate

router = APIRouter()

@router.post("/verify-pin", response_model=PinResponse)
async def verify_pin(
    pin: Optional[str] = None,
    payload: Optional[PinRequest] = Body(None),
    access_gate: AccessGate = Depends(get_access_gate),
):
    """
    Let a sending device check its PIN before starting an upload.
    Accepts ``{"pin": "..."}`` or ``?pin=...``.
    """
    provided = payload.pin if payload is not None and payload.pin else pin
    if access_gate.verify(provided):
        return PinResponse(success=True)

    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=PinResponse(success=False, error="Invalid PIN").model_dump(),
    )

"""FastAPI routes exposing relay status and the Twilio endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_admission_gate
from api.schemas import HealthResponse
from api.twilio_routes import router as twilio_router
from telephony.admission import AdmissionGate

router = APIRouter()
router.include_router(twilio_router)


@router.get("/health", response_model=HealthResponse)
async def health(gate: AdmissionGate = Depends(get_admission_gate)) -> HealthResponse:
    return HealthResponse(
        active_calls=gate.active,
        max_calls=gate.capacity,
        total_calls=gate.total_admitted,
        rejected_calls=gate.total_rejected,
    )

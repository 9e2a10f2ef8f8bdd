from fastapi import APIRouter, Request

from schemas import HealthResponse

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    gate = request.app.state.governor.fetch_gate
    return HealthResponse(
        status="ok",
        version=VERSION,
        active_fetches=gate.active_fetches,
        max_concurrent_fetches=gate.max_active,
    )

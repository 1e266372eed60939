"""Current dashboard snapshot."""

from fastapi import APIRouter, Depends

from fleetwatch.api.app_state import AppState
from fleetwatch.api.dependencies import get_state
from fleetwatch.api.schemas import APIResponse

router = APIRouter(prefix="/api", tags=["snapshot"])


@router.get("/snapshot")
async def snapshot(state: AppState = Depends(get_state)) -> APIResponse:
    handler = state.snapshot
    if handler is None:
        return APIResponse(success=False, error="Snapshot not available")
    return APIResponse(success=True, data=handler.snapshot())

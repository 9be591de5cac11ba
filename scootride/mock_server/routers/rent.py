"""
Rent router — POST /rent/start/{scooter_id}, POST /rent/stop/{scooter_id},
              GET /rent/history
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from scootride.mock_server.auth import get_current_user
from scootride.mock_server.deps import get_store, simulate_latency
from scootride.mock_server.state import InsufficientFunds, MockStore, RideConflict, RideNotFound

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rent", tags=["Rent"], dependencies=[Depends(simulate_latency)])


def _insufficient(exc: InsufficientFunds) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


@router.post("/start/{scooter_id}")
async def start_rent(
    scooter_id: str,
    user_id: str = Depends(get_current_user),
    store: MockStore = Depends(get_store),
):
    try:
        return store.start(user_id, scooter_id)
    except InsufficientFunds as exc:
        return _insufficient(exc)
    except RideConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("/stop/{scooter_id}")
async def stop_rent(
    scooter_id: str,
    user_id: str = Depends(get_current_user),
    store: MockStore = Depends(get_store),
):
    try:
        return store.stop(user_id, scooter_id)
    except InsufficientFunds as exc:
        return _insufficient(exc)
    except RideNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.get("/history")
async def rent_history(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    store: MockStore = Depends(get_store),
):
    trips = store.history(user_id, status=status_filter, limit=limit)
    return {"trips": trips, "total": len(trips)}

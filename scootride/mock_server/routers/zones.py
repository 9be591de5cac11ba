"""
Zones router — GET /zones/check, GET /zones?city=
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from scootride.mock_server.auth import get_current_user
from scootride.mock_server.deps import get_store, simulate_latency
from scootride.mock_server.state import MockStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/zones", tags=["Zones"], dependencies=[Depends(simulate_latency)])


@router.get("/check")
async def check_zone(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    city: Optional[str] = None,
    _user_id: str = Depends(get_current_user),
    store: MockStore = Depends(get_store),
):
    result = store.check_zone(latitude, longitude, city)
    logger.debug("Zone check (%.5f, %.5f) -> %s", latitude, longitude, result["rule"])
    return result


@router.get("")
async def list_zones(
    city: str = Query(default="Stockholm"),
    _user_id: str = Depends(get_current_user),
    store: MockStore = Depends(get_store),
):
    return {"zones": store.zones(city)}

"""
Ride history loader used by the trip history screen.
"""
import logging
from typing import Optional

from scootride.errors import HISTORY_FAILED_MESSAGE, RideError
from scootride.schemas.schemas import Ride
from scootride.services.ride_api import RideApi

logger = logging.getLogger(__name__)


class RideHistory:
    def __init__(self, api: RideApi):
        self._api = api
        self.rides: list[Ride] = []
        self.is_loading = False
        self.error: Optional[str] = None

    async def refetch(self) -> list[Ride]:
        """Reload the list. On failure the previous rides stay and ``error`` is set."""
        self.is_loading = True
        self.error = None
        try:
            rides = await self._api.get_history()
        except RideError as exc:
            logger.error("Failed to fetch ride history: %s", exc)
            self.error = HISTORY_FAILED_MESSAGE
        else:
            logger.info("Loaded %d rides", len(rides))
            self.rides = sorted(rides, key=lambda ride: ride.start_time, reverse=True)
        finally:
            self.is_loading = False
        return self.rides

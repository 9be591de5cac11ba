"""
Composition root: one connection, the API wrappers on top of it, the ride
session and the zone tracker. Zone tracking runs exactly while a ride exists.
"""
import logging
from typing import Optional

from scootride.config import Settings, get_settings
from scootride.connection import ApiConnection, build_connection
from scootride.schemas.schemas import RideSessionState
from scootride.services.geo_watch import GeoWatchSource, ManualGeoWatchSource
from scootride.services.history import RideHistory
from scootride.services.ride_api import RideApi
from scootride.services.ride_session import RideSession
from scootride.services.zone_rules import ZoneRuleClient
from scootride.services.zone_tracker import ZoneRuleTracker
from scootride.services.zones import ZoneService, city_label_to_value

logger = logging.getLogger(__name__)


class RideEngine:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        source: Optional[GeoWatchSource] = None,
        connection: Optional[ApiConnection] = None,
        city: Optional[str] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self._owns_connection = connection is None
        self.connection = connection or build_connection(settings)

        self.api = RideApi(self.connection)
        self.zones = ZoneService(self.connection)
        self.history = RideHistory(self.api)
        self.source = source or ManualGeoWatchSource()
        self.session = RideSession(self.api, settings)
        self.tracker = ZoneRuleTracker(
            ZoneRuleClient(self.connection),
            self.source,
            city=city_label_to_value(city or settings.default_city),
            min_fetch_interval_ms=settings.min_fetch_interval_ms,
        )
        self._tracking = False
        self._unsubscribe = self.session.subscribe(self._on_session_change)

    def _on_session_change(self, state: RideSessionState) -> None:
        if state.is_riding != self._tracking:
            self._tracking = state.is_riding
            self.tracker.start(state.is_riding)

    async def close(self) -> None:
        self._unsubscribe()
        await self.tracker.close()
        await self.session.close()
        if self._owns_connection:
            await self.connection.aclose()
        logger.info("Ride engine closed")

    async def __aenter__(self) -> "RideEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

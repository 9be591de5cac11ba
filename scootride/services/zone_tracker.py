"""
Zone rule tracking while a ride is active.

Flow:
  1. start(True) subscribes to the location source
  2. each location update is stored as the last known coordinate
  3. a zone check is issued unless one started less than
     MIN_FETCH_INTERVAL_MS ago (the update is dropped, not queued)
  4. the result replaces rule / parking hint; a failure only sets ``error``
     and keeps the last known data on screen
  5. force_refresh() re-checks the last coordinate, ignoring the throttle

Every check carries a sequence number. A response is applied only if no
newer check has already been applied, so a slow old response cannot
overwrite a fresher rule.
"""
import asyncio
import logging
import time
from typing import Callable, Coroutine, Optional

from scootride.errors import (
    LOCATION_FAILED_MESSAGE,
    LOCATION_UNSUPPORTED_MESSAGE,
    ZONE_CHECK_FAILED_MESSAGE,
)
from scootride.schemas.schemas import Coordinate, ParkingHint, ZoneRuleMatch, ZoneRuleState
from scootride.services.geo_watch import GeoWatchSource, Subscription
from scootride.services.zone_rules import ZoneRuleClient

logger = logging.getLogger(__name__)

MIN_FETCH_INTERVAL_MS = 8000

Listener = Callable[[ZoneRuleState], None]


def _epoch_ms() -> float:
    return time.time() * 1000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class ZoneRuleTracker:
    def __init__(
        self,
        client: ZoneRuleClient,
        source: GeoWatchSource,
        city: str | None = None,
        min_fetch_interval_ms: int = MIN_FETCH_INTERVAL_MS,
        clock: Callable[[], float] = _epoch_ms,
        monotonic: Callable[[], float] = _monotonic_ms,
    ):
        self._client = client
        self._source = source
        self.city = city
        self._min_interval_ms = min_fetch_interval_ms
        self._clock = clock
        # throttle window only; last_updated stays on the wall clock
        self._monotonic = monotonic

        self._rule: Optional[ZoneRuleMatch] = None
        self._nearest_parking: Optional[ParkingHint] = None
        self._error: Optional[str] = None
        self._last_updated: Optional[int] = None
        self._in_flight = 0

        self._last_coordinate: Optional[Coordinate] = None
        self._last_check_started: Optional[float] = None
        self._sequence = 0
        self._last_applied_sequence = 0

        self._subscription: Optional[Subscription] = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def rule(self) -> Optional[ZoneRuleMatch]:
        return self._rule

    @property
    def nearest_parking(self) -> Optional[ParkingHint]:
        return self._nearest_parking

    @property
    def is_checking(self) -> bool:
        return self._in_flight > 0

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def last_updated(self) -> Optional[int]:
        return self._last_updated

    @property
    def last_coordinate(self) -> Optional[Coordinate]:
        return self._last_coordinate

    @property
    def is_watching(self) -> bool:
        return self._subscription is not None

    def state(self) -> ZoneRuleState:
        return ZoneRuleState(
            rule=self._rule,
            nearest_parking=self._nearest_parking,
            is_checking=self.is_checking,
            error=self._error,
            last_updated=self._last_updated,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot on every change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.state()
        for listener in list(self._listeners):
            listener(snapshot)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, enabled: bool) -> None:
        if not enabled:
            self.stop()
            return
        if self._subscription is not None:
            return

        if not self._source.supported:
            self._error = LOCATION_UNSUPPORTED_MESSAGE
            self._notify()
            return

        self._error = None
        self._subscription = self._source.watch(self.on_location_update, self._on_location_error)
        logger.info("Zone rule tracking started")
        self._notify()

    def stop(self) -> None:
        """Release the location subscription and cancel checks still in flight."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("Zone rule tracking stopped")
        for task in list(self._tasks):
            task.cancel()

    async def close(self) -> None:
        self.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def on_location_update(self, coordinate: Coordinate) -> None:
        self._last_coordinate = coordinate
        if self._claim_check(force=False):
            self._spawn(self._run_check(coordinate))

    def _on_location_error(self, error: Exception) -> None:
        logger.warning("Location watch error: %s", error)
        self._error = LOCATION_FAILED_MESSAGE
        self._notify()

    async def request_check(self, coordinate: Optional[Coordinate], force: bool = False) -> bool:
        """Run a check now unless throttled. Returns whether a check was issued."""
        if coordinate is None or not self._claim_check(force):
            return False
        await self._run_check(coordinate)
        return True

    def force_refresh(self) -> Optional[asyncio.Task]:
        """Re-check the last known coordinate regardless of the throttle window."""
        if self._last_coordinate is None:
            return None
        self._claim_check(force=True)
        return self._spawn(self._run_check(self._last_coordinate))

    def _claim_check(self, force: bool) -> bool:
        now = self._monotonic()
        if (
            not force
            and self._last_check_started is not None
            and now - self._last_check_started < self._min_interval_ms
        ):
            return False
        self._last_check_started = now
        return True

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_check(self, coordinate: Coordinate) -> None:
        self._sequence += 1
        sequence = self._sequence
        self._in_flight += 1
        self._notify()
        try:
            result = await self._client.check(coordinate, city=self.city)
        except Exception as exc:
            logger.warning("Zone rule check #%d failed: %s", sequence, exc)
            if sequence > self._last_applied_sequence:
                self._error = ZONE_CHECK_FAILED_MESSAGE
        else:
            if sequence < self._last_applied_sequence:
                logger.info(
                    "Discarding stale zone check #%d (already applied #%d)",
                    sequence, self._last_applied_sequence,
                )
            else:
                self._last_applied_sequence = sequence
                self._rule = result.rule
                self._nearest_parking = result.nearest_parking
                self._error = None
                self._last_updated = int(self._clock())
        finally:
            self._in_flight -= 1
            self._notify()

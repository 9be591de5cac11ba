"""
Ride session state machine.

  idle ──start_ride──▶ starting ──ok──▶ active ──end_ride──▶ ending ──ok──▶ idle
                          │                                   │
                          └──error──▶ idle          error ◀───┘ (back to active)

While active (and while ending) a one-second timer accrues ``duration_seconds``
on its own task, independent of any network call. Cost is derived from the
accrued duration, never stored.

Overlapping calls are rejected by the pending states: start_ride outside
``idle`` raises AlreadyActive, end_ride during ``ending`` raises AlreadyActive,
end_ride during ``starting`` is a no-op because no ride is active yet.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from scootride.config import Settings, get_settings
from scootride.errors import START_FAILED_MESSAGE, AlreadyActive, InvalidInput, MalformedRecord
from scootride.schemas.schemas import Ride, RideSessionState, RideStatusEnum, SessionPhaseEnum
from scootride.services.normalization import reconcile_completed_ride
from scootride.services.pricing import calculate_ride_cost
from scootride.services.ride_api import RideApi

logger = logging.getLogger(__name__)

Listener = Callable[[RideSessionState], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideSession:
    def __init__(
        self,
        api: RideApi,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = settings or get_settings()
        self._api = api
        self._clock = clock
        self.unlock_fee = settings.unlock_fee
        self.per_minute_rate = settings.per_minute_rate
        self._tick_seconds = settings.accrual_tick_seconds

        self._phase = SessionPhaseEnum.idle
        self._ride: Optional[Ride] = None
        self._duration_seconds = 0
        self._last_completed: Optional[Ride] = None
        self._timer: Optional[asyncio.Task] = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhaseEnum:
        return self._phase

    @property
    def current_ride(self) -> Optional[Ride]:
        return self._ride

    @property
    def is_riding(self) -> bool:
        return self._ride is not None

    @property
    def is_loading(self) -> bool:
        return self._phase in (SessionPhaseEnum.starting, SessionPhaseEnum.ending)

    @property
    def duration_seconds(self) -> int:
        return self._duration_seconds

    @property
    def current_cost(self) -> float:
        if self._ride is None:
            return 0.0
        return float(calculate_ride_cost(self._duration_seconds, self.unlock_fee, self.per_minute_rate))

    @property
    def last_completed(self) -> Optional[Ride]:
        return self._last_completed

    def state(self) -> RideSessionState:
        return RideSessionState(
            phase=self._phase,
            is_riding=self.is_riding,
            is_loading=self.is_loading,
            current_ride=self._ride,
            duration_seconds=self._duration_seconds,
            current_cost=self.current_cost,
            last_completed=self._last_completed,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
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

    def _set_phase(self, phase: SessionPhaseEnum) -> None:
        self._phase = phase
        self._notify()

    # ------------------------------------------------------------------
    # Accrual
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance the accrual clock by one second."""
        if self._ride is None:
            return
        self._duration_seconds += 1
        self._notify()

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self.tick()

    def _start_timer(self) -> None:
        self._stop_timer()
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_ride(self, scooter_id: str) -> Ride:
        scooter_id = (scooter_id or "").strip()
        if not scooter_id:
            raise InvalidInput("scooter_id must not be empty", "A scooter id is required to start a ride.")
        if self._phase != SessionPhaseEnum.idle:
            raise AlreadyActive(
                f"cannot start a ride while {self._phase.value}",
                "A ride is already in progress.",
            )

        self._set_phase(SessionPhaseEnum.starting)
        try:
            ride = await self._api.start_ride(scooter_id, fallback={"start_time": self._clock()})
            if not ride.is_active:
                raise MalformedRecord(f"start returned a {ride.status.value} ride", START_FAILED_MESSAGE)
        except (Exception, asyncio.CancelledError) as exc:
            logger.error("Failed to start ride on %s: %r", scooter_id, exc)
            self._set_phase(SessionPhaseEnum.idle)
            raise

        self._ride = ride
        self._duration_seconds = 0
        self._start_timer()
        self._set_phase(SessionPhaseEnum.active)
        logger.info("Ride %s started on scooter %s", ride.id, ride.scooter_id)
        return ride

    def _local_snapshot(self, ride: Ride) -> Ride:
        return Ride(
            id=ride.id,
            scooter_id=ride.scooter_id,
            user_id=ride.user_id,
            start_time=ride.start_time,
            end_time=self._clock(),
            status=RideStatusEnum.completed,
            cost=self.current_cost,
            duration_seconds=self._duration_seconds,
        )

    async def end_ride(self) -> Optional[Ride]:
        """
        End the active ride. Returns the reconciled ride, or None when there
        was nothing to end. On failure the ride stays active and the call can
        be retried.
        """
        if self._phase == SessionPhaseEnum.ending:
            raise AlreadyActive("an end-ride call is already in flight", "The ride is being ended, please wait.")
        if self._phase != SessionPhaseEnum.active or self._ride is None:
            return None

        ride = self._ride
        local = self._local_snapshot(ride)
        self._set_phase(SessionPhaseEnum.ending)
        try:
            authoritative = await self._api.stop_ride(ride.scooter_id, fallback=local.model_dump())
        except (Exception, asyncio.CancelledError) as exc:
            logger.error("Failed to end ride %s: %r", ride.id, exc)
            self._set_phase(SessionPhaseEnum.active)
            raise

        completed = reconcile_completed_ride(authoritative, local)
        self._stop_timer()
        self._ride = None
        self._duration_seconds = 0
        self._last_completed = completed
        self._set_phase(SessionPhaseEnum.idle)
        logger.info(
            "Ride %s completed: %ss, cost %.2f",
            completed.id, completed.duration_seconds, completed.cost,
        )
        return completed

    def clear_last_completed(self) -> None:
        if self._last_completed is not None:
            self._last_completed = None
            self._notify()

    async def restore(self) -> Optional[Ride]:
        """
        Resume a ride the backend still considers active (e.g. after an app
        restart). Accrual continues from the time elapsed since its start.
        """
        if self._phase != SessionPhaseEnum.idle:
            return self._ride

        ride = await self._api.get_current_ride()
        if ride is None or self._phase != SessionPhaseEnum.idle:
            return self._ride

        elapsed = int((self._clock() - ride.start_time).total_seconds())
        self._ride = ride
        self._duration_seconds = max(ride.duration_seconds, elapsed, 0)
        self._start_timer()
        self._set_phase(SessionPhaseEnum.active)
        logger.info("Restored active ride %s (%ss elapsed)", ride.id, self._duration_seconds)
        return ride

    async def close(self) -> None:
        """Teardown: stop the accrual timer. Ride state is left as is."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)

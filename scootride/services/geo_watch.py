"""
Device location streams.

A source pushes coordinates to ``on_update`` until the returned Subscription
is cancelled. Per-update failures go to ``on_error`` and do not end the
stream.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from scootride.schemas.schemas import Coordinate

logger = logging.getLogger(__name__)

LocationCallback = Callable[[Coordinate], None]
ErrorCallback = Callable[[Exception], None]

WATCH_INTERVAL_SECONDS = 1.0
WATCH_TIMEOUT_SECONDS = 10.0


class Subscription:
    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is not None:
            cancel, self._cancel = self._cancel, None
            cancel()


class GeoWatchSource(ABC):
    # False on devices without location support
    supported = True

    @abstractmethod
    def watch(self, on_update: LocationCallback, on_error: ErrorCallback) -> Subscription:
        ...


class ManualGeoWatchSource(GeoWatchSource):
    """Coordinates pushed by hand: simulators, test panels, tests."""

    def __init__(self):
        self._watchers: dict[int, tuple[LocationCallback, ErrorCallback]] = {}
        self._next_id = 0

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def watch(self, on_update: LocationCallback, on_error: ErrorCallback) -> Subscription:
        watch_id = self._next_id
        self._next_id += 1
        self._watchers[watch_id] = (on_update, on_error)
        return Subscription(lambda: self._watchers.pop(watch_id, None))

    def emit(self, latitude: float, longitude: float) -> Coordinate:
        coordinate = Coordinate(latitude=latitude, longitude=longitude)
        for on_update, _ in list(self._watchers.values()):
            on_update(coordinate)
        return coordinate

    def fail(self, error: Exception) -> None:
        for _, on_error in list(self._watchers.values()):
            on_error(error)


class PollingGeoWatchSource(GeoWatchSource):
    """
    Polls an async position provider on its own task.
    Each read is bounded by ``timeout_seconds``; a failed read is reported and
    polling continues.
    """

    def __init__(
        self,
        get_position: Callable[[], Awaitable[Coordinate]],
        interval_seconds: float = WATCH_INTERVAL_SECONDS,
        timeout_seconds: float = WATCH_TIMEOUT_SECONDS,
    ):
        self._get_position = get_position
        self._interval = interval_seconds
        self._timeout = timeout_seconds

    def watch(self, on_update: LocationCallback, on_error: ErrorCallback) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._poll(on_update, on_error))
        return Subscription(task.cancel)

    async def _poll(self, on_update: LocationCallback, on_error: ErrorCallback) -> None:
        while True:
            try:
                coordinate = await asyncio.wait_for(self._get_position(), self._timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Position read failed: %s", exc)
                on_error(exc)
            else:
                on_update(coordinate)
            await asyncio.sleep(self._interval)

"""
Unit tests for location sources and subscriptions.
"""
import asyncio

import pytest

from scootride.schemas.schemas import Coordinate
from scootride.services.geo_watch import ManualGeoWatchSource, PollingGeoWatchSource, Subscription


class TestSubscription:
    def test_unsubscribe_runs_once(self):
        calls = []
        subscription = Subscription(lambda: calls.append(1))
        subscription.unsubscribe()
        subscription.unsubscribe()
        assert calls == [1]
        assert not subscription.active


class TestManualSource:
    def test_emit_reaches_every_watcher(self):
        source = ManualGeoWatchSource()
        seen_a, seen_b = [], []
        source.watch(seen_a.append, lambda exc: None)
        sub_b = source.watch(seen_b.append, lambda exc: None)

        source.emit(59.33, 18.06)
        sub_b.unsubscribe()
        source.emit(59.34, 18.06)

        assert len(seen_a) == 2
        assert seen_b == [Coordinate(latitude=59.33, longitude=18.06)]
        assert source.watcher_count == 1

    def test_fail_reaches_error_callback(self):
        source = ManualGeoWatchSource()
        errors = []
        source.watch(lambda coordinate: None, errors.append)
        source.fail(TimeoutError("no fix"))
        assert isinstance(errors[0], TimeoutError)


@pytest.mark.asyncio
class TestPollingSource:
    async def test_polls_until_unsubscribed(self):
        reads = []

        async def get_position():
            reads.append(1)
            return Coordinate(latitude=59.33, longitude=18.06)

        updates = []
        source = PollingGeoWatchSource(get_position, interval_seconds=0.01)
        subscription = source.watch(updates.append, lambda exc: None)
        await asyncio.sleep(0.05)
        subscription.unsubscribe()
        await asyncio.sleep(0.02)
        count = len(updates)
        await asyncio.sleep(0.03)

        assert count > 0
        assert len(updates) == count

    async def test_failed_read_is_reported_and_polling_continues(self):
        attempts = []

        async def get_position():
            attempts.append(1)
            if len(attempts) == 1:
                raise PermissionError("denied")
            return Coordinate(latitude=59.33, longitude=18.06)

        updates, errors = [], []
        subscription = PollingGeoWatchSource(get_position, interval_seconds=0.01).watch(
            updates.append, errors.append
        )
        await asyncio.sleep(0.05)
        subscription.unsubscribe()

        assert isinstance(errors[0], PermissionError)
        assert updates

    async def test_slow_read_times_out(self):
        async def get_position():
            await asyncio.sleep(10)

        errors = []
        subscription = PollingGeoWatchSource(get_position, interval_seconds=0.01, timeout_seconds=0.01).watch(
            lambda coordinate: None, errors.append
        )
        await asyncio.sleep(0.05)
        subscription.unsubscribe()

        assert errors
        assert isinstance(errors[0], asyncio.TimeoutError)

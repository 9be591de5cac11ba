"""
Unit tests for the rent/history API wrapper over a mocked transport.
"""
import logging

import httpx
import pytest

from scootride.connection import ApiConnection
from scootride.errors import (
    END_FAILED_MESSAGE,
    HISTORY_FAILED_MESSAGE,
    INSUFFICIENT_BALANCE_END_MESSAGE,
    INSUFFICIENT_BALANCE_START_MESSAGE,
    START_FAILED_MESSAGE,
    InsufficientBalance,
    InvalidInput,
    MalformedRecord,
    NetworkFailure,
)
from scootride.schemas.schemas import RideStatusEnum
from scootride.services.ride_api import RideApi, is_insufficient_balance

ACTIVE_TRIP = {
    "tripId": "trip-1",
    "scooter": {"id": "SCOOT-900"},
    "userId": "user_123",
    "startTime": "2024-05-01T10:00:00Z",
    "status": "ACTIVE",
    "cost": "10,00 kr",
}


def api_for(handler) -> RideApi:
    connection = ApiConnection("http://api.test", access_token="t", transport=httpx.MockTransport(handler))
    return RideApi(connection)


class TestIsInsufficientBalance:
    @pytest.mark.parametrize(
        "body",
        [
            {"error": "Balance is insufficient"},
            {"message": "INSUFFICIENT_FUNDS"},
            {"detail": "insufficient balance"},
        ],
    )
    def test_recognised_bodies(self, body):
        assert is_insufficient_balance(httpx.Response(400, json=body))

    def test_plain_text_body(self):
        assert is_insufficient_balance(httpx.Response(400, text="Insufficient balance"))

    def test_other_statuses_and_errors(self):
        assert not is_insufficient_balance(httpx.Response(402, json={"error": "insufficient"}))
        assert not is_insufficient_balance(httpx.Response(400, json={"error": "bad scooter"}))


@pytest.mark.asyncio
class TestStartStop:
    async def test_start_posts_and_normalizes(self):
        seen = {}

        def handler(request):
            seen["method"], seen["path"] = request.method, request.url.path
            return httpx.Response(200, json={"trip": ACTIVE_TRIP})

        ride = await api_for(handler).start_ride("SCOOT-900")

        assert (seen["method"], seen["path"]) == ("POST", "/rent/start/SCOOT-900")
        assert ride.id == "trip-1"
        assert ride.is_active
        assert ride.cost == 10.0

    async def test_start_fills_scooter_from_request(self):
        trip = {k: v for k, v in ACTIVE_TRIP.items() if k != "scooter"}
        ride = await api_for(lambda request: httpx.Response(200, json=trip)).start_ride("SCOOT-900")
        assert ride.scooter_id == "SCOOT-900"

    async def test_empty_scooter_id(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(InvalidInput):
            await api_for(handler).start_ride("")

    async def test_insufficient_balance_start(self):
        api = api_for(lambda request: httpx.Response(400, json={"error": "Balance is insufficient"}))
        with pytest.raises(InsufficientBalance) as exc_info:
            await api.start_ride("SCOOT-123")
        assert exc_info.value.user_message == INSUFFICIENT_BALANCE_START_MESSAGE
        assert not exc_info.value.retryable

    async def test_insufficient_balance_stop(self):
        api = api_for(lambda request: httpx.Response(400, json={"error": "Balance is insufficient"}))
        with pytest.raises(InsufficientBalance) as exc_info:
            await api.stop_ride("SCOOT-123")
        assert exc_info.value.user_message == INSUFFICIENT_BALANCE_END_MESSAGE

    async def test_server_error(self):
        api = api_for(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(NetworkFailure) as exc_info:
            await api.start_ride("SCOOT-900")
        assert exc_info.value.status_code == 500
        assert exc_info.value.user_message == START_FAILED_MESSAGE

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkFailure) as exc_info:
            await api_for(handler).stop_ride("SCOOT-900")
        assert exc_info.value.user_message == END_FAILED_MESSAGE

    async def test_unusable_record(self):
        api = api_for(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(MalformedRecord) as exc_info:
            await api.start_ride("SCOOT-900")
        assert exc_info.value.user_message == START_FAILED_MESSAGE

    async def test_non_json(self):
        api = api_for(lambda request: httpx.Response(200, text="OK"))
        with pytest.raises(MalformedRecord):
            await api.stop_ride("SCOOT-900")

    async def test_stop_uses_local_fallback(self):
        trip = {**ACTIVE_TRIP, "status": "COMPLETED", "endTime": "2024-05-01T10:01:05Z", "cost": 15}
        api = api_for(lambda request: httpx.Response(200, json=trip))
        ride = await api.stop_ride("SCOOT-900", fallback={"duration_seconds": 65})
        assert ride.status == RideStatusEnum.completed
        # duration from the timestamps wins over the fallback
        assert ride.duration_seconds == 65
        assert ride.cost == 15.0


@pytest.mark.asyncio
class TestHistory:
    async def test_history_envelope(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"trips": [ACTIVE_TRIP], "total": 1})

        rides = await api_for(handler).get_history(status="active", limit=1)
        assert [ride.id for ride in rides] == ["trip-1"]
        assert seen["params"] == {"status": "active", "limit": "1"}

    async def test_forbidden_is_empty(self, caplog):
        api = api_for(lambda request: httpx.Response(403))
        with caplog.at_level(logging.DEBUG, logger="scootride"):
            assert await api.get_history() == []
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    async def test_server_error(self):
        api = api_for(lambda request: httpx.Response(502))
        with pytest.raises(NetworkFailure) as exc_info:
            await api.get_history()
        assert exc_info.value.user_message == HISTORY_FAILED_MESSAGE

    async def test_non_json_is_empty(self):
        api = api_for(lambda request: httpx.Response(200, text="<html>"))
        assert await api.get_history() == []

    async def test_current_ride(self):
        api = api_for(lambda request: httpx.Response(200, json=[ACTIVE_TRIP]))
        ride = await api.get_current_ride()
        assert ride.id == "trip-1"

    async def test_no_current_ride(self):
        api = api_for(lambda request: httpx.Response(200, json={"trips": []}))
        assert await api.get_current_ride() is None

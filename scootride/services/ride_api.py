"""
Ride endpoints — POST /rent/start/{scooterId}, POST /rent/stop/{scooterId},
                 GET /rent/history
"""
import logging
from typing import Any, Mapping, Optional

import httpx

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
from scootride.schemas.schemas import Ride
from scootride.services.normalization import normalize_history, normalize_ride, unwrap_record

logger = logging.getLogger(__name__)

START_ENDPOINT = "/rent/start/{scooter_id}"
STOP_ENDPOINT = "/rent/stop/{scooter_id}"
HISTORY_ENDPOINT = "/rent/history"

_BALANCE_ERROR_FIELDS = ("error", "message", "detail", "code")


def is_insufficient_balance(resp: httpx.Response) -> bool:
    """HTTP 400 whose body says the balance is insufficient."""
    if resp.status_code != 400:
        return False
    try:
        body = resp.json()
    except ValueError:
        body = resp.text

    if isinstance(body, Mapping):
        texts = [str(body.get(field) or "") for field in _BALANCE_ERROR_FIELDS]
    else:
        texts = [str(body)]
    return any("insufficient" in text.lower() for text in texts)


def _require_scooter_id(scooter_id: str) -> str:
    scooter_id = (scooter_id or "").strip()
    if not scooter_id:
        raise InvalidInput("scooter_id must not be empty", "A scooter id is required.")
    return scooter_id


class RideApi:
    def __init__(self, connection: ApiConnection):
        self._connection = connection

    async def start_ride(self, scooter_id: str, fallback: Optional[Mapping[str, Any]] = None) -> Ride:
        scooter_id = _require_scooter_id(scooter_id)
        return await self._post_ride(
            START_ENDPOINT.format(scooter_id=scooter_id),
            fallback={"scooter_id": scooter_id, **(fallback or {})},
            insufficient_message=INSUFFICIENT_BALANCE_START_MESSAGE,
            failed_message=START_FAILED_MESSAGE,
        )

    async def stop_ride(self, scooter_id: str, fallback: Optional[Mapping[str, Any]] = None) -> Ride:
        """``fallback`` holds the locally computed ride; it fills fields the response omits."""
        scooter_id = _require_scooter_id(scooter_id)
        return await self._post_ride(
            STOP_ENDPOINT.format(scooter_id=scooter_id),
            fallback={"scooter_id": scooter_id, **(fallback or {})},
            insufficient_message=INSUFFICIENT_BALANCE_END_MESSAGE,
            failed_message=END_FAILED_MESSAGE,
        )

    async def _post_ride(
        self,
        path: str,
        fallback: Mapping[str, Any],
        insufficient_message: str,
        failed_message: str,
    ) -> Ride:
        try:
            resp = await self._connection.post(path)
        except httpx.HTTPError as exc:
            logger.error("POST %s failed: %s", path, exc)
            raise NetworkFailure(f"POST {path} failed: {exc}", failed_message) from exc

        if is_insufficient_balance(resp):
            logger.info("POST %s rejected: insufficient balance", path)
            raise InsufficientBalance(insufficient_message)

        if resp.status_code >= 400:
            logger.error("POST %s returned HTTP %s: %s", path, resp.status_code, resp.text)
            raise NetworkFailure(
                f"POST {path} returned HTTP {resp.status_code}",
                failed_message,
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedRecord(f"POST {path} response is not JSON", failed_message) from exc

        try:
            return normalize_ride(unwrap_record(payload), fallback=fallback)
        except MalformedRecord as exc:
            logger.error("POST %s returned an unusable ride record: %s", path, exc)
            raise MalformedRecord(str(exc), failed_message) from exc

    async def get_history(self, status: str | None = None, limit: int | None = None) -> list[Ride]:
        """
        Best effort: 403 (history not available for this account) and unknown
        payload shapes both give [], single bad records are skipped.
        """
        params: dict[str, Any] = {}
        if status:
            params["status"] = status
        if limit is not None:
            params["limit"] = limit

        try:
            resp = await self._connection.get(HISTORY_ENDPOINT, params=params)
        except httpx.HTTPError as exc:
            logger.error("GET %s failed: %s", HISTORY_ENDPOINT, exc)
            raise NetworkFailure(f"GET {HISTORY_ENDPOINT} failed: {exc}", HISTORY_FAILED_MESSAGE) from exc

        if resp.status_code == 403:
            logger.debug("Ride history not authorised for this account")
            return []

        if resp.status_code >= 400:
            logger.error("GET %s returned HTTP %s", HISTORY_ENDPOINT, resp.status_code)
            raise NetworkFailure(
                f"GET {HISTORY_ENDPOINT} returned HTTP {resp.status_code}",
                HISTORY_FAILED_MESSAGE,
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError:
            logger.warning("Ride history response is not JSON")
            return []
        return normalize_history(payload)

    async def get_current_ride(self) -> Optional[Ride]:
        rides = await self.get_history(status="active", limit=1)
        return next((ride for ride in rides if ride.is_active), None)

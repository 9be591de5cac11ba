"""
Zone rule lookup — GET /zones/check.

The backend resolves which rule is in force (highest priority wins) and
returns a single ``rule`` plus the nearest parking hint. This client only
normalizes the two response shapes it has been seen to send:

  {"rule": {"type": "slow-speed", "priority": 40, "speedLimitKmh": 15}, ...}
  {"rule": "slow-speed", "priority": 40, "speedLimitKmh": 15, ...}

and the parking hint variants (``zoneId``, ``distance``, ``{lat, lng}``).
"""
import logging
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from scootride.connection import ApiConnection
from scootride.errors import MalformedRecord, NetworkFailure, ZONE_CHECK_FAILED_MESSAGE
from scootride.schemas.schemas import Coordinate, ParkingHint, ZoneCheckResult, ZoneRuleMatch
from scootride.services.normalization import Path, first_value, is_identifier, parse_amount

logger = logging.getLogger(__name__)

ZONE_CHECK_ENDPOINT = "/zones/check"

ZONE_TYPE_ALIASES: dict[str, str] = {
    "no-go": "no-go", "no_go": "no-go", "nogo": "no-go",
    "slow-speed": "slow-speed", "slow_speed": "slow-speed", "slowspeed": "slow-speed", "slow": "slow-speed",
    "parking": "parking",
    "charging": "charging",
    "normal": "normal",
}

RULE_TYPE_PATHS: tuple[Path, ...] = (("type",), ("zoneType",), ("kind",))
PRIORITY_PATHS: tuple[Path, ...] = (("priority",),)
MESSAGE_PATHS: tuple[Path, ...] = (("message",), ("description",))
SPEED_LIMIT_PATHS: tuple[Path, ...] = (
    ("speedLimitKmh",), ("speed_limit_kmh",), ("speedLimit",), ("speed_limit",),
)

PARKING_ID_PATHS: tuple[Path, ...] = (("id",), ("zoneId",), ("zone_id",), ("_id",))
PARKING_DISTANCE_PATHS: tuple[Path, ...] = (("distanceMeters",), ("distance_meters",), ("distance",))
COORDINATE_CONTAINERS: tuple[Path, ...] = (("coordinate",), ("coordinates",), ("location",), ("position",), ())

LATITUDE_KEYS = ("latitude", "lat")
LONGITUDE_KEYS = ("longitude", "lng", "lon")


def normalize_zone_type(value: Any) -> Optional[str]:
    """Canonical type for known aliases; unknown server-defined types pass through lower-cased."""
    if not isinstance(value, str) or not value.strip():
        return None
    normalized = value.strip().lower()
    return ZONE_TYPE_ALIASES.get(normalized, normalized)


def _parse_priority(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise MalformedRecord(f"invalid priority {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedRecord(f"invalid priority {value!r}") from exc


def parse_coordinate(value: Any) -> Optional[Coordinate]:
    """{latitude, longitude}, {lat, lng|lon} or a GeoJSON Point."""
    if not isinstance(value, Mapping):
        return None

    if value.get("type") == "Point":
        point = value.get("coordinates")
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            return None
        return Coordinate(latitude=point[1], longitude=point[0])

    lat = next((value[k] for k in LATITUDE_KEYS if value.get(k) is not None), None)
    lng = next((value[k] for k in LONGITUDE_KEYS if value.get(k) is not None), None)
    if lat is None or lng is None:
        return None
    return Coordinate(latitude=lat, longitude=lng)


def normalize_rule(payload: Mapping) -> Optional[ZoneRuleMatch]:
    raw = payload.get("rule")
    if raw is None:
        return None

    if isinstance(raw, str):
        # bare type string, details live next to it
        source, raw_type = payload, raw
    elif isinstance(raw, Mapping):
        source, raw_type = raw, first_value(raw, RULE_TYPE_PATHS)
    else:
        raise MalformedRecord(f"unexpected rule value {raw!r}")

    zone_type = normalize_zone_type(raw_type)
    if zone_type is None:
        raise MalformedRecord(f"zone rule without a type: {raw!r}")

    speed_limit = first_value(source, SPEED_LIMIT_PATHS)
    try:
        return ZoneRuleMatch(
            type=zone_type,
            priority=_parse_priority(first_value(source, PRIORITY_PATHS)),
            message=first_value(source, MESSAGE_PATHS),
            speed_limit_kmh=parse_amount(speed_limit) if speed_limit is not None else None,
        )
    except ValidationError as exc:
        raise MalformedRecord(f"invalid zone rule: {exc}") from exc


def normalize_parking_hint(raw: Any) -> Optional[ParkingHint]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise MalformedRecord(f"unexpected parking hint {raw!r}")

    hint_id = first_value(raw, PARKING_ID_PATHS, accept=is_identifier)
    if hint_id is None:
        raise MalformedRecord("parking hint without id")

    coordinate = None
    for path in COORDINATE_CONTAINERS:
        container = raw
        for key in path:
            container = container.get(key) if isinstance(container, Mapping) else None
        try:
            coordinate = parse_coordinate(container)
        except ValidationError as exc:
            raise MalformedRecord(f"invalid parking coordinate: {exc}") from exc
        if coordinate is not None:
            break
    if coordinate is None:
        raise MalformedRecord(f"parking hint {hint_id} has no coordinate")

    distance = first_value(raw, PARKING_DISTANCE_PATHS)
    priority = first_value(raw, PRIORITY_PATHS)
    try:
        return ParkingHint(
            id=str(hint_id),
            name=first_value(raw, (("name",),)),
            priority=_parse_priority(priority) if priority is not None else None,
            distance_meters=parse_amount(distance) if distance is not None else None,
            coordinate=coordinate,
        )
    except ValidationError as exc:
        raise MalformedRecord(f"invalid parking hint: {exc}") from exc


def parse_zone_check(payload: Any) -> ZoneCheckResult:
    """
    Raises MalformedRecord when the rule cannot be read. A broken parking
    hint only loses the hint: it is advisory, the rule is not.
    """
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), Mapping):
        payload = payload["data"]
    if not isinstance(payload, Mapping):
        raise MalformedRecord(f"zone check payload is not an object: {type(payload).__name__}")

    rule = normalize_rule(payload)

    raw_parking = payload.get("nearestParking", payload.get("nearest_parking"))
    try:
        parking = normalize_parking_hint(raw_parking)
    except MalformedRecord as exc:
        logger.warning("Ignoring nearest parking hint: %s", exc)
        parking = None

    return ZoneCheckResult(rule=rule, nearest_parking=parking)


class ZoneRuleClient:
    """Stateless: one request in, one ZoneCheckResult out."""

    def __init__(self, connection: ApiConnection):
        self._connection = connection

    async def check(self, coordinate: Coordinate, city: str | None = None) -> ZoneCheckResult:
        params: dict[str, Any] = {
            "latitude": coordinate.latitude,
            "longitude": coordinate.longitude,
        }
        if city:
            params["city"] = city

        try:
            resp = await self._connection.get(ZONE_CHECK_ENDPOINT, params=params)
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"zone check failed: {exc}", ZONE_CHECK_FAILED_MESSAGE) from exc

        if resp.status_code >= 400:
            raise NetworkFailure(
                f"zone check returned HTTP {resp.status_code}",
                ZONE_CHECK_FAILED_MESSAGE,
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedRecord("zone check response is not JSON", ZONE_CHECK_FAILED_MESSAGE) from exc
        return parse_zone_check(payload)

"""
Ride record normalization and end-of-ride reconciliation.

Backend ride records drift in shape: ids arrive as ``id``/``tripId``/``_id``,
the scooter may be a flat field or an embedded object, amounts and durations
may be formatted strings ("45,50 kr", "5 minutes"). Each canonical field is
read through an ordered list of extraction paths; the first path that yields
a usable value wins. The tables below are the single source of precedence.

Flow:
  1. extract_ride_list() finds the record list inside a history envelope
  2. normalize_ride() maps one raw record to a canonical Ride
  3. normalize_history() does 1 + 2, skipping malformed records
  4. reconcile_completed_ride() merges the stop response with the local snapshot
"""
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from scootride.errors import MalformedRecord
from scootride.schemas.schemas import Ride, RideStatusEnum

logger = logging.getLogger(__name__)

Path = tuple[str, ...]

# ---------------------------------------------------------------------------
# Extraction tables
# ---------------------------------------------------------------------------

FIELD_RULES: dict[str, tuple[Path, ...]] = {
    "id": (("id",), ("tripId",), ("trip_id",), ("rideId",), ("ride_id",), ("_id",)),
    "scooter_id": (
        ("scooterId",), ("scooter_id",), ("vehicleId",), ("vehicle_id",),
        # one level of nesting
        ("scooter", "id"), ("scooter", "_id"), ("scooter", "scooterId"),
        ("vehicle", "id"), ("vehicle", "_id"),
        ("scooter",), ("vehicle",),
    ),
    "user_id": (
        ("userId",), ("user_id",), ("customerId",),
        ("user", "id"), ("user", "_id"),
        ("user",),
    ),
    "start_time": (("startTime",), ("start_time",), ("startedAt",), ("started_at",), ("createdAt",)),
    "end_time": (("endTime",), ("end_time",), ("endedAt",), ("ended_at",)),
    "status": (("status",), ("state",)),
    "cost": (("cost",), ("totalCost",), ("total_cost",), ("price",), ("amount",), ("fare",)),
}

# (path, unit used when the value carries no unit of its own)
DURATION_RULES: tuple[tuple[Path, str], ...] = (
    (("durationSeconds",), "seconds"),
    (("duration_seconds",), "seconds"),
    (("durationMinutes",), "minutes"),
    (("duration_minutes",), "minutes"),
    (("duration",), "seconds"),
)

# Tried in order; the first path that resolves to a list is the record list.
ENVELOPE_SHAPES: tuple[tuple[str, Path], ...] = (
    ("bare list", ()),
    ("trips", ("trips",)),
    ("rides", ("rides",)),
    ("history", ("history",)),
    ("data", ("data",)),
    ("data.trips", ("data", "trips")),
    ("data.rides", ("data", "rides")),
    ("paginated results", ("results",)),
)

SINGLE_RECORD_WRAPPERS: tuple[str, ...] = ("trip", "ride", "data")

UNIT_SECONDS: dict[str, int] = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "sek": 1, "sekund": 1, "sekunder": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "minut": 60, "minuter": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "tim": 3600, "timme": 3600, "timmar": 3600,
}

_STATUSES = {status.value: status for status in RideStatusEnum}
_AMOUNT_RE = re.compile(r"[-+]?(?:\d{1,3}(?:[ \u00a0\u202f]\d{3})+|\d+)(?:[.,']\d+)*")
_CLOCK_RE = re.compile(r"^(\d+):([0-5]?\d)(?::([0-5]?\d))?$")
_DURATION_PART_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*([a-zåäö]+)?\.?")
_datetime_adapter = TypeAdapter(datetime)


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------

def _dig(payload: Any, path: Path) -> Any:
    value = payload
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def is_identifier(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip() != ""


def first_value(
    record: Mapping,
    paths: tuple[Path, ...],
    accept: Callable[[Any], bool] = _is_present,
) -> Any:
    """Value at the first path that yields something ``accept`` likes, else None."""
    for path in paths:
        value = _dig(record, path)
        if accept(value):
            return value
    return None


def extract_identifier(record: Mapping, field: str) -> Optional[str]:
    value = first_value(record, FIELD_RULES[field], accept=is_identifier)
    return str(value).strip() if value is not None else None


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------

def _parse_decimal_string(text: str) -> float:
    match = _AMOUNT_RE.search(text)
    if not match:
        raise MalformedRecord(f"no number in {text!r}")

    raw = match.group()
    sign = "-" if raw.startswith("-") else ""
    body = re.sub(r"[\s\u00a0\u202f'+-]", "", raw)

    if "." in body and "," in body:
        # the right-most separator is the decimal one
        cut = max(body.rfind("."), body.rfind(","))
        integer = body[:cut].replace(".", "").replace(",", "")
        body = f"{integer}.{body[cut + 1:]}"
    else:
        sep = "," if "," in body else "."
        if body.count(sep) == 1:
            body = body.replace(sep, ".")
        else:
            body = body.replace(sep, "")

    return float(f"{sign}{body}")


def parse_amount(value: Any) -> float:
    """
    Currency amount from a number or a formatted string.
    Both ``.`` and ``,`` are accepted as decimal separators: "45,50 kr" → 45.5,
    "1 234,50 kr" → 1234.5, "1,234.50" → 1234.5.
    """
    if isinstance(value, bool):
        raise MalformedRecord(f"not an amount: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
    elif isinstance(value, str):
        result = _parse_decimal_string(value)
    else:
        raise MalformedRecord(f"not an amount: {value!r}")
    if not math.isfinite(result):
        raise MalformedRecord(f"not a finite amount: {value!r}")
    return result


def parse_duration_seconds(value: Any, default_unit: str = "seconds") -> int:
    """
    Whole seconds from a number or a formatted duration.
    "30 minutes" → 1800, "1 h 5 min" → 3900, "12:30" → 750, "1:02:03" → 3723.
    Bare numbers are read in ``default_unit``.
    """
    factor = UNIT_SECONDS[default_unit]
    if isinstance(value, bool):
        raise MalformedRecord(f"not a duration: {value!r}")

    if isinstance(value, (int, float, Decimal)):
        seconds = float(value) * factor
    elif isinstance(value, str):
        seconds = _parse_duration_string(value.strip().lower(), factor)
    else:
        raise MalformedRecord(f"not a duration: {value!r}")

    if not math.isfinite(seconds) or seconds < 0:
        raise MalformedRecord(f"invalid duration: {value!r}")
    return int(round(seconds))


def _parse_duration_string(text: str, default_factor: int) -> float:
    clock = _CLOCK_RE.match(text)
    if clock:
        first, second, third = clock.groups()
        if third is None:
            return int(first) * 60 + int(second)
        return int(first) * 3600 + int(second) * 60 + int(third)

    parts = list(_DURATION_PART_RE.finditer(text))
    leftover = _DURATION_PART_RE.sub(" ", text).replace(",", " ").split()
    if not parts or any(word not in ("and", "och") for word in leftover):
        raise MalformedRecord(f"unparseable duration {text!r}")

    total = 0.0
    for part in parts:
        number = float(part.group(1).replace(",", "."))
        unit = part.group(2)
        if unit is None:
            total += number * default_factor
        elif unit in UNIT_SECONDS:
            total += number * UNIT_SECONDS[unit]
        else:
            raise MalformedRecord(f"unknown duration unit {unit!r} in {text!r}")
    return total


def parse_timestamp(value: Any) -> datetime:
    """ISO strings, epoch seconds/milliseconds or datetimes; naive values are taken as UTC."""
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError as exc:
        raise MalformedRecord(f"invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_status(value: Any) -> Optional[RideStatusEnum]:
    if isinstance(value, str):
        return _STATUSES.get(value.strip().lower())
    return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def unwrap_record(payload: Any) -> Any:
    """Single-ride responses may come bare or wrapped in trip/ride/data."""
    if isinstance(payload, Mapping):
        for key in SINGLE_RECORD_WRAPPERS:
            inner = payload.get(key)
            if isinstance(inner, Mapping):
                return inner
    return payload


def _extract_duration(record: Mapping) -> Optional[int]:
    for path, unit in DURATION_RULES:
        value = _dig(record, path)
        if _is_present(value):
            return parse_duration_seconds(value, default_unit=unit)
    return None


def normalize_ride(record: Any, fallback: Optional[Mapping[str, Any]] = None) -> Ride:
    """
    Map one raw backend record to a canonical Ride.

    ``fallback`` supplies canonical (snake_case) values for fields the record
    does not carry. Raises MalformedRecord when the record cannot be mapped.
    """
    if not isinstance(record, Mapping):
        raise MalformedRecord(f"ride record is not an object: {type(record).__name__}")
    fallback = fallback or {}

    ride_id = extract_identifier(record, "id") or fallback.get("id")
    if not ride_id:
        raise MalformedRecord("ride record has no id")

    scooter_id = extract_identifier(record, "scooter_id") or fallback.get("scooter_id")
    if not scooter_id:
        raise MalformedRecord(f"ride {ride_id} has no scooter id")

    user_id = extract_identifier(record, "user_id") or fallback.get("user_id") or ""

    explicit_status = parse_status(first_value(record, FIELD_RULES["status"]))

    raw_end = first_value(record, FIELD_RULES["end_time"])
    end_time = parse_timestamp(raw_end) if raw_end is not None else None
    if end_time is None and explicit_status != RideStatusEnum.active:
        end_time = fallback.get("end_time")

    raw_start = first_value(record, FIELD_RULES["start_time"])
    start_time = parse_timestamp(raw_start) if raw_start is not None else fallback.get("start_time")

    duration = _extract_duration(record)
    if duration is None and start_time is not None and end_time is not None:
        duration = max(int((end_time - start_time).total_seconds()), 0)
    if duration is None:
        duration = fallback.get("duration_seconds", 0)

    raw_cost = first_value(record, FIELD_RULES["cost"])
    cost = parse_amount(raw_cost) if raw_cost is not None else fallback.get("cost", 0.0)
    if cost < 0:
        raise MalformedRecord(f"ride {ride_id} has a negative cost")

    status = explicit_status or (RideStatusEnum.completed if end_time else RideStatusEnum.active)
    if status == RideStatusEnum.active and end_time is not None:
        raise MalformedRecord(f"ride {ride_id} is active but has an end time")

    try:
        if start_time is None and end_time is not None:
            start_time = end_time - timedelta(seconds=duration)
        if status != RideStatusEnum.active and end_time is None and start_time is not None:
            end_time = start_time + timedelta(seconds=duration)
    except OverflowError as exc:
        raise MalformedRecord(f"ride {ride_id} has out-of-range times: {exc}") from exc
    if start_time is None:
        raise MalformedRecord(f"ride {ride_id} has no start time")

    try:
        return Ride(
            id=ride_id,
            scooter_id=scooter_id,
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            cost=cost,
            duration_seconds=duration,
        )
    except (ValueError, OverflowError) as exc:
        raise MalformedRecord(f"ride {ride_id} failed validation: {exc}") from exc


def extract_ride_list(payload: Any) -> Optional[list]:
    for name, path in ENVELOPE_SHAPES:
        value = _dig(payload, path) if path else payload
        if isinstance(value, list):
            logger.debug("Ride history envelope: %s", name)
            return value
    return None


def _describe_shape(payload: Any) -> str:
    if isinstance(payload, Mapping):
        return f"object with keys {sorted(payload)}"
    return type(payload).__name__


def normalize_history(payload: Any) -> list[Ride]:
    """Best effort: unknown envelopes give [] and malformed records are skipped."""
    records = extract_ride_list(payload)
    if records is None:
        logger.warning("Unrecognised ride history payload: %s", _describe_shape(payload))
        return []

    rides: list[Ride] = []
    for index, record in enumerate(records):
        try:
            rides.append(normalize_ride(record))
        except MalformedRecord as exc:
            logger.warning("Skipping malformed ride record #%d: %s", index, exc)
    return rides


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile_completed_ride(authoritative: Ride, local: Ride) -> Ride:
    """
    Merge the backend's stop response with the locally accrued snapshot.

    A zero duration from the backend is a rounding artefact and is replaced
    by the local duration. The backend cost always wins.
    """
    duration = authoritative.duration_seconds
    if duration == 0 and local.duration_seconds > 0:
        logger.info(
            "Ride %s: backend reported 0s, using locally accrued %ss",
            authoritative.id, local.duration_seconds,
        )
        duration = local.duration_seconds

    status = authoritative.status
    end_time = authoritative.end_time
    if status == RideStatusEnum.active:
        status, end_time = local.status, local.end_time

    return Ride(
        id=authoritative.id,
        scooter_id=authoritative.scooter_id,
        user_id=authoritative.user_id or local.user_id,
        start_time=authoritative.start_time,
        end_time=end_time,
        status=status,
        cost=authoritative.cost,
        duration_seconds=duration,
    )

"""
In-memory backend state for the mock environment.

Records are served in the drifting shapes the real backend
uses (``tripId``, embedded scooter, upper-case status, formatted cost), and
durations are reported rounded down to whole minutes the way the real
backend does, so a ride under a minute comes back as 0 seconds.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from math import atan2, cos, radians, sin, sqrt
from typing import Callable, Optional

from scootride.config import Settings
from scootride.services.pricing import calculate_ride_cost, format_cost

logger = logging.getLogger(__name__)


class InsufficientFunds(Exception):
    pass


class RideConflict(Exception):
    pass


class RideNotFound(Exception):
    pass


@dataclass(frozen=True)
class TestArea:
    id: str
    name: str
    type: str
    city: str
    priority: int
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    message: Optional[str] = None
    speed_limit_kmh: Optional[float] = None

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    @property
    def center(self) -> tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2

    def to_dto(self) -> dict:
        ring = [
            [self.min_lng, self.min_lat],
            [self.max_lng, self.min_lat],
            [self.max_lng, self.max_lat],
            [self.min_lng, self.max_lat],
            [self.min_lng, self.min_lat],
        ]
        properties: dict = {"description": self.message}
        if self.speed_limit_kmh is not None:
            properties["speedLimitKmh"] = self.speed_limit_kmh
        return {
            "id": self.id,
            "type": self.type.replace("-", "_"),
            "city": self.city,
            "name": self.name,
            "priority": self.priority,
            "properties": properties,
            "geometry": {"type": "Polygon", "coordinates": [ring]},
        }


TEST_AREAS: tuple[TestArea, ...] = (
    TestArea("malmo-center-slow", "Malmö City Center", "slow-speed", "Malmö", 50,
             55.59300, 55.59825, 13.001385, 13.012704, "Max 15 km/h", 15),
    TestArea("malmo-center-parking", "Malmö Center", "parking", "Malmö", 30,
             55.59379, 55.59639, 13.003956, 13.008515, "Parking allowed"),
    TestArea("malmo-hospital", "Skånes Hospital", "no-go", "Malmö", 100,
             55.58510, 55.58956, 12.998494, 13.006189, "No riding or parking near the hospital"),
    TestArea("malmo-north-parking", "Malmö North", "parking", "Malmö", 30,
             55.60455, 55.60691, 13.003697, 13.011042, "Parking allowed"),
    TestArea("sthlm-north-parking", "Stockholm North", "parking", "Stockholm", 30,
             59.34524, 59.34754, 18.05797, 18.06483, "Parking allowed"),
    TestArea("sthlm-west-parking", "Stockholm West", "parking", "Stockholm", 30,
             59.33616, 59.33797, 18.05204, 18.05656, "Parking allowed"),
)

CHARGING_STATIONS: tuple[dict, ...] = (
    {
        "id": "malmo-center-charging",
        "type": "charging",
        "city": "Malmö",
        "name": "Malmö Center",
        "priority": 10,
        "geometry": {"type": "Point", "coordinates": [13.004868, 55.59456]},
    },
)


def _haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = 6371000
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * R * atan2(sqrt(a), sqrt(1 - a))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MockStore:
    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow):
        self.settings = settings
        self._clock = clock
        self.balances: dict[str, float] = {}
        self._active: dict[str, dict] = {}
        self._rented: dict[str, str] = {}
        self._history: dict[str, list[dict]] = {}

    def balance(self, user_id: str) -> float:
        return self.balances.setdefault(user_id, self.settings.mock_starting_balance)

    # ------------------------------------------------------------------
    # Rentals
    # ------------------------------------------------------------------

    def start(self, user_id: str, scooter_id: str) -> dict:
        if user_id in self._active:
            raise RideConflict("You already have an active ride")
        if scooter_id in self._rented:
            raise RideConflict("Scooter is already rented")
        if self.balance(user_id) < self.settings.unlock_fee:
            raise InsufficientFunds("Balance is insufficient")

        record = {
            "tripId": f"trip_{uuid.uuid4().hex[:12]}",
            "scooter": {"id": scooter_id},
            "userId": user_id,
            "startTime": self._clock().isoformat(),
            "status": "ACTIVE",
            "cost": format_cost(self.settings.unlock_fee, self.settings.currency).replace(".", ","),
        }
        self._active[user_id] = record
        self._rented[scooter_id] = user_id
        logger.info("Mock ride %s started: user=%s scooter=%s", record["tripId"], user_id, scooter_id)
        return dict(record)

    def stop(self, user_id: str, scooter_id: str) -> dict:
        record = self._active.get(user_id)
        if record is None or record["scooter"]["id"] != scooter_id:
            raise RideNotFound(f"No active ride on {scooter_id}")

        now = self._clock()
        elapsed = max(int((now - datetime.fromisoformat(record["startTime"])).total_seconds()), 0)
        cost = float(calculate_ride_cost(elapsed, self.settings.unlock_fee, self.settings.per_minute_rate))
        if self.balance(user_id) < cost:
            raise InsufficientFunds("Balance is insufficient")

        self.balances[user_id] = round(self.balance(user_id) - cost, 2)
        completed = {
            **record,
            "endTime": now.isoformat(),
            "status": "COMPLETED",
            "cost": cost,
            # whole minutes only
            "durationSeconds": (elapsed // 60) * 60,
        }
        del self._active[user_id]
        del self._rented[scooter_id]
        self._history.setdefault(user_id, []).insert(0, completed)
        logger.info("Mock ride %s stopped: %ss, cost %.2f", record["tripId"], elapsed, cost)
        return dict(completed)

    def history(self, user_id: str, status: str | None = None, limit: int | None = None) -> list[dict]:
        rides = []
        if user_id in self._active:
            rides.append(dict(self._active[user_id]))
        rides.extend(dict(r) for r in self._history.get(user_id, []))
        if status:
            rides = [r for r in rides if r["status"].lower() == status.lower()]
        return rides[:limit] if limit is not None else rides

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    def check_zone(self, lat: float, lng: float, city: str | None = None) -> dict:
        areas = [a for a in TEST_AREAS if city is None or a.city == city]
        matches = sorted((a for a in areas if a.contains(lat, lng)), key=lambda a: a.priority)
        payload: dict = {"rule": None, "nearestParking": None}

        if matches:
            winner = matches[-1]
            payload.update(rule=winner.type, priority=winner.priority, message=winner.message)
            if winner.speed_limit_kmh is not None:
                payload["speedLimitKmh"] = winner.speed_limit_kmh

        parking = [a for a in areas if a.type == "parking"]
        if parking:
            nearest = min(parking, key=lambda a: _haversine_m(lat, lng, *a.center))
            center_lat, center_lng = nearest.center
            payload["nearestParking"] = {
                "zoneId": nearest.id,
                "name": nearest.name,
                "priority": nearest.priority,
                "distance": round(_haversine_m(lat, lng, center_lat, center_lng), 1),
                "coordinate": {"lat": center_lat, "lng": center_lng},
            }
        return payload

    def zones(self, city: str) -> list[dict]:
        dtos = [a.to_dto() for a in TEST_AREAS if a.city == city]
        dtos.extend(c for c in CHARGING_STATIONS if c["city"] == city)
        return dtos

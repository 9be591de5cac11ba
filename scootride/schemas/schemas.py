from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideStatusEnum(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class ZoneTypeEnum(str, Enum):
    """Known zone types. The backend may send others; zone ``type`` fields stay plain strings."""
    no_go = "no-go"
    slow_speed = "slow-speed"
    parking = "parking"
    charging = "charging"
    normal = "normal"


class SessionPhaseEnum(str, Enum):
    idle = "idle"
    starting = "starting"
    active = "active"
    ending = "ending"


class WireModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Geo
# ---------------------------------------------------------------------------

class Coordinate(WireModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class Ride(WireModel):
    id: str
    scooter_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: RideStatusEnum
    cost: float = Field(0.0, ge=0)
    duration_seconds: int = Field(0, ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _end_time_matches_status(self) -> "Ride":
        if self.status == RideStatusEnum.active and self.end_time is not None:
            raise ValueError("an active ride cannot have an end time")
        if self.status != RideStatusEnum.active and self.end_time is None:
            raise ValueError(f"a {self.status.value} ride needs an end time")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == RideStatusEnum.active


class RideSessionState(BaseModel):
    phase: SessionPhaseEnum
    is_riding: bool
    is_loading: bool
    current_ride: Optional[Ride] = None
    duration_seconds: int = 0
    current_cost: float = 0.0
    last_completed: Optional[Ride] = None


# ---------------------------------------------------------------------------
# Zone rule schemas
# ---------------------------------------------------------------------------

class ZoneRuleMatch(WireModel):
    type: str
    priority: int = 0
    message: Optional[str] = None
    speed_limit_kmh: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _speed_limit_only_for_slow_zones(self) -> "ZoneRuleMatch":
        if self.type != ZoneTypeEnum.slow_speed.value:
            self.speed_limit_kmh = None
        return self


class ParkingHint(WireModel):
    id: str
    name: Optional[str] = None
    priority: Optional[int] = None
    distance_meters: Optional[float] = Field(None, ge=0)
    coordinate: Coordinate


class ZoneCheckResult(WireModel):
    rule: Optional[ZoneRuleMatch] = None
    nearest_parking: Optional[ParkingHint] = None


class ZoneRuleState(BaseModel):
    rule: Optional[ZoneRuleMatch] = None
    nearest_parking: Optional[ParkingHint] = None
    is_checking: bool = False
    error: Optional[str] = None
    # epoch milliseconds of the last applied result
    last_updated: Optional[int] = None


# ---------------------------------------------------------------------------
# Map zone schemas
# ---------------------------------------------------------------------------

class ZoneRules(BaseModel):
    description: Optional[str] = None
    speed_limit_kmh: Optional[float] = None


class PolygonZone(BaseModel):
    id: str
    type: str
    name: Optional[str] = None
    priority: int = 0
    # each polygon is [outer ring, *holes]
    polygons: list[list[list[Coordinate]]] = Field(..., min_length=1)
    rules: Optional[ZoneRules] = None

    # shapely geometry, built once by services.zones
    _shape: Any = PrivateAttr(default=None)

    @property
    def rings(self) -> list[list[Coordinate]]:
        """Outer rings only, in draw order."""
        return [polygon[0] for polygon in self.polygons]


class ChargingStation(BaseModel):
    id: str
    name: Optional[str] = None
    priority: int = 0
    coordinate: Coordinate
    rules: Optional[ZoneRules] = None


# ---------------------------------------------------------------------------
# Pricing schemas
# ---------------------------------------------------------------------------

class PricingInfo(BaseModel):
    city: str
    currency: str
    base_fare: float = Field(..., ge=0)
    per_minute: float = Field(..., ge=0)
    note: Optional[str] = None
    updated_at: Optional[datetime] = None

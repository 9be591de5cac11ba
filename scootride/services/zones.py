"""
Map zones — GET /zones?city=

Zone DTOs are GeoJSON-ish: Polygon / MultiPolygon for areas, Point for
charging stations. Every list in a ZoneCatalog is sorted ascending by
priority so higher-priority zones are drawn last and win when evaluated.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

import httpx
from pydantic import ValidationError
from shapely.geometry import MultiPolygon, Point, Polygon

from scootride.connection import ApiConnection
from scootride.errors import ZONES_FAILED_MESSAGE, MalformedRecord, NetworkFailure
from scootride.schemas.schemas import ChargingStation, Coordinate, PolygonZone, ZoneRules, ZoneTypeEnum
from scootride.services.normalization import first_value
from scootride.services.zone_rules import normalize_zone_type

logger = logging.getLogger(__name__)

ZONES_ENDPOINT = "/zones"
DEFAULT_PRIORITY = 0
KNOWN_CITIES = ("Stockholm", "Göteborg", "Malmö")
DEFAULT_CITY = "Stockholm"

Zone = Union[PolygonZone, ChargingStation]


def city_label_to_value(city: Optional[str]) -> str:
    return city if city in KNOWN_CITIES else DEFAULT_CITY


def extract_zone_list(payload: Any) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in ("zones", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def resolve_priority(dto: Mapping) -> int:
    for value in (
        dto.get("priority"),
        (dto.get("properties") or {}).get("priority"),
        (dto.get("metadata") or {}).get("priority"),
    ):
        if _number(value) is not None:
            return int(value)
    return DEFAULT_PRIORITY


def build_rules(dto: Mapping) -> Optional[ZoneRules]:
    sources = (dto.get("properties") or {}, dto.get("metadata") or {})
    description = next(
        (s["description"] for s in sources if isinstance(s.get("description"), str)), None
    )
    speed_limit = next(
        (
            _number(s.get(key))
            for s in sources
            for key in ("speedLimitKmh", "speed_limit")
            if _number(s.get(key)) is not None
        ),
        None,
    )
    if description is None and speed_limit is None:
        return None
    return ZoneRules(description=description, speed_limit_kmh=speed_limit)


def _to_coordinate(position: Any) -> Coordinate:
    # GeoJSON order is [lng, lat]
    return Coordinate(latitude=position[1], longitude=position[0])


def _polygons(geometry: Mapping) -> list[list[list[Coordinate]]]:
    """[outer ring, *holes] per polygon. A polygon with an unusable outer ring is dropped whole."""
    if geometry.get("type") == "Polygon":
        polygons = [geometry.get("coordinates") or []]
    else:
        polygons = geometry.get("coordinates") or []
    return [
        [[_to_coordinate(position) for position in ring] for ring in polygon if len(ring) >= 3]
        for polygon in polygons
        if polygon and len(polygon[0]) >= 3
    ]


def parse_zone(dto: Any) -> Optional[Zone]:
    """None for DTOs of unknown type or with geometry that does not fit the type."""
    if not isinstance(dto, Mapping):
        return None
    zone_type = normalize_zone_type(dto.get("type") or (dto.get("properties") or {}).get("type"))
    geometry = dto.get("geometry")
    if zone_type not in {t.value for t in ZoneTypeEnum} or not isinstance(geometry, Mapping):
        return None

    zone_id = first_value(dto, (("id",), ("_id",)))
    if zone_id is None:
        return None

    try:
        if zone_type == ZoneTypeEnum.charging.value:
            if geometry.get("type") != "Point":
                return None
            return ChargingStation(
                id=str(zone_id),
                name=dto.get("name"),
                priority=resolve_priority(dto),
                coordinate=_to_coordinate(geometry.get("coordinates")),
                rules=build_rules(dto),
            )

        if geometry.get("type") not in ("Polygon", "MultiPolygon"):
            return None
        polygons = _polygons(geometry)
        if not polygons:
            return None
        zone = PolygonZone(
            id=str(zone_id),
            type=zone_type,
            name=dto.get("name"),
            priority=resolve_priority(dto),
            polygons=polygons,
            rules=build_rules(dto),
        )
        zone_shape(zone)
        return zone
    except (ValidationError, IndexError, TypeError) as exc:
        logger.warning("Skipping zone %s: %s", zone_id, exc)
        return None


def sort_by_priority(zones: list) -> list:
    return sorted(zones, key=lambda zone: zone.priority)


def _lng_lat(ring: list[Coordinate]) -> list[tuple[float, float]]:
    return [(c.longitude, c.latitude) for c in ring]


def zone_shape(zone: PolygonZone) -> MultiPolygon:
    """Shapely geometry of the zone, holes included. Built on first use and kept on the zone."""
    if zone._shape is None:
        zone._shape = MultiPolygon([
            Polygon(_lng_lat(polygon[0]), [_lng_lat(hole) for hole in polygon[1:]])
            for polygon in zone.polygons
        ])
    return zone._shape


def zone_contains(zone: PolygonZone, coordinate: Coordinate) -> bool:
    """Boundaries count as inside; points within a hole do not."""
    return zone_shape(zone).covers(Point(coordinate.longitude, coordinate.latitude))


@dataclass
class ZoneCatalog:
    city: str
    parking: list[PolygonZone] = field(default_factory=list)
    slow_speed: list[PolygonZone] = field(default_factory=list)
    no_go: list[PolygonZone] = field(default_factory=list)
    normal: list[PolygonZone] = field(default_factory=list)
    charging: list[ChargingStation] = field(default_factory=list)

    def polygons(self) -> list[PolygonZone]:
        """All area zones, ascending priority (draw order)."""
        return sort_by_priority(self.parking + self.slow_speed + self.no_go + self.normal)

    def zone_at(self, coordinate: Coordinate) -> Optional[PolygonZone]:
        """
        The zone in force at ``coordinate`` for display: zones are evaluated
        in ascending priority and a later match overrides an earlier one.
        """
        match = None
        for zone in self.polygons():
            if zone_contains(zone, coordinate):
                match = zone
        return match


def build_catalog(city: str, dtos: list) -> ZoneCatalog:
    catalog = ZoneCatalog(city=city)
    buckets = {
        ZoneTypeEnum.parking.value: catalog.parking,
        ZoneTypeEnum.slow_speed.value: catalog.slow_speed,
        ZoneTypeEnum.no_go.value: catalog.no_go,
        ZoneTypeEnum.normal.value: catalog.normal,
    }
    for dto in dtos:
        zone = parse_zone(dto)
        if zone is None:
            continue
        if isinstance(zone, ChargingStation):
            catalog.charging.append(zone)
        else:
            buckets[zone.type].append(zone)

    for name in ("parking", "slow_speed", "no_go", "normal", "charging"):
        setattr(catalog, name, sort_by_priority(getattr(catalog, name)))
    return catalog


class ZoneService:
    def __init__(self, connection: ApiConnection):
        self._connection = connection

    async def fetch(self, city: str | None = None) -> ZoneCatalog:
        city = city_label_to_value(city)
        try:
            resp = await self._connection.get(ZONES_ENDPOINT, params={"city": city})
        except httpx.HTTPError as exc:
            logger.error("Failed to load zones: %s", exc)
            raise NetworkFailure(f"GET {ZONES_ENDPOINT} failed: {exc}", ZONES_FAILED_MESSAGE) from exc

        if resp.status_code >= 400:
            raise NetworkFailure(
                f"GET {ZONES_ENDPOINT} returned HTTP {resp.status_code}",
                ZONES_FAILED_MESSAGE,
                status_code=resp.status_code,
            )

        try:
            dtos = extract_zone_list(resp.json())
        except ValueError as exc:
            raise MalformedRecord("zones response is not JSON", ZONES_FAILED_MESSAGE) from exc
        if not dtos:
            raise MalformedRecord("zones payload missing or malformed", ZONES_FAILED_MESSAGE)

        catalog = build_catalog(city, dtos)
        logger.info(
            "Loaded zones for %s: %d parking, %d slow-speed, %d no-go, %d charging",
            city, len(catalog.parking), len(catalog.slow_speed), len(catalog.no_go), len(catalog.charging),
        )
        return catalog

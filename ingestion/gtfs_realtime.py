"""
Fetches the campus GTFS-Realtime feeds and decodes them into plain records.

Feeds:
  - Vehicle Positions (location, trip, occupancy)
  - Trip Updates      (per-stop arrival/departure delays)
  - Service Alerts    (human-readable disruption notices)

Nothing here is cached or held between requests: every query cycle calls
RealtimeFeedClient.fetch_*() and gets a fresh snapshot.  Each feed is
isolated: a fetch or decode failure on one is logged and yields an empty
list for that feed only, so schedule data alone can still answer.

Optional protobuf fields are read with HasField() and surface as None
(or OccupancyStatus.UNKNOWN) when absent, never as a guessed default.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, TypeVar

import httpx
from google.transit import gtfs_realtime_pb2

from config import (
    GTFS_RT_ALERTS_URL,
    GTFS_RT_API_KEY,
    GTFS_RT_TIMEOUT_SECONDS,
    GTFS_RT_TRIP_UPDATES_URL,
    GTFS_RT_VEHICLE_POSITIONS_URL,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OccupancyStatus(str, Enum):
    EMPTY = "EMPTY"
    MANY_SEATS_AVAILABLE = "MANY_SEATS_AVAILABLE"
    FEW_SEATS_AVAILABLE = "FEW_SEATS_AVAILABLE"
    STANDING_ROOM_ONLY = "STANDING_ROOM_ONLY"
    CRUSHED_STANDING_ROOM_ONLY = "CRUSHED_STANDING_ROOM_ONLY"
    FULL = "FULL"
    NOT_ACCEPTING_PASSENGERS = "NOT_ACCEPTING_PASSENGERS"
    UNKNOWN = "UNKNOWN"


# GTFS-RT OccupancyStatus wire codes.  Codes outside this table (e.g. 7
# NO_DATA_AVAILABLE, 8 NOT_BOARDABLE) decode as UNKNOWN.
OCCUPANCY_BY_CODE: dict[int, OccupancyStatus] = {
    0: OccupancyStatus.EMPTY,
    1: OccupancyStatus.MANY_SEATS_AVAILABLE,
    2: OccupancyStatus.FEW_SEATS_AVAILABLE,
    3: OccupancyStatus.STANDING_ROOM_ONLY,
    4: OccupancyStatus.CRUSHED_STANDING_ROOM_ONLY,
    5: OccupancyStatus.FULL,
    6: OccupancyStatus.NOT_ACCEPTING_PASSENGERS,
}


@dataclass(frozen=True)
class VehiclePosition:
    vehicle_id: str
    trip_id: str
    route_id: str
    lat: float
    lon: float
    bearing: float | None = None
    speed: float | None = None          # metres / second
    current_stop_sequence: int | None = None
    current_status: str | None = None   # INCOMING_AT | STOPPED_AT | IN_TRANSIT_TO
    occupancy: OccupancyStatus = OccupancyStatus.UNKNOWN
    timestamp: int | None = None        # Unix seconds


@dataclass(frozen=True)
class StopTimeEvent:
    delay: int | None = None        # seconds; positive = late, negative = early
    time: int | None = None         # predicted Unix seconds
    uncertainty: int | None = None


@dataclass(frozen=True)
class StopTimeUpdate:
    stop_sequence: int | None = None
    stop_id: str | None = None
    arrival: StopTimeEvent | None = None
    departure: StopTimeEvent | None = None


@dataclass(frozen=True)
class TripUpdate:
    trip_id: str
    route_id: str = ""
    timestamp: int | None = None
    stop_time_updates: list[StopTimeUpdate] = field(default_factory=list)


@dataclass(frozen=True)
class InformedEntity:
    route_id: str | None = None
    stop_id: str | None = None
    trip_id: str | None = None


@dataclass(frozen=True)
class ServiceAlert:
    alert_id: str
    header: str
    description: str = ""
    informed_entities: list[InformedEntity] = field(default_factory=list)
    start: int | None = None   # Unix seconds of the first active period
    end: int | None = None

    def affects(self, route_id: str | None = None, stop_id: str | None = None) -> bool:
        for ie in self.informed_entities:
            if route_id is not None and ie.route_id == route_id:
                return True
            if stop_id is not None and ie.stop_id == stop_id:
                return True
        return False


@dataclass(frozen=True)
class RealtimeSnapshot:
    vehicles: list[VehiclePosition] = field(default_factory=list)
    trip_updates: list[TripUpdate] = field(default_factory=list)
    alerts: list[ServiceAlert] = field(default_factory=list)
    fetched_at: datetime | None = None


# ---------------------------------------------------------------------------
# Field normalisation
# ---------------------------------------------------------------------------

def normalize_timestamp(value: Any) -> int | None:
    """
    Normalise a feed timestamp to integer Unix seconds.

    Accepts plain ints, integral floats / numeric strings, integer wrapper
    types (numpy.int64 and friends, via __index__), and 64-bit Long wrappers
    of the form {"low": ..., "high": ...} as produced by JSON-encoded feeds.
    Zero, None and anything unparseable map to None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict) and "low" in value:
        low = int(value.get("low", 0)) & 0xFFFFFFFF
        high = int(value.get("high", 0))
        result = (high << 32) | low
    elif isinstance(value, int):
        result = value
    elif isinstance(value, float):
        result = int(value)
    elif isinstance(value, str):
        try:
            result = int(float(value.strip()))
        except ValueError:
            return None
    elif hasattr(value, "__index__"):
        result = value.__index__()
    else:
        return None
    return result or None


def decode_occupancy(code: int | None) -> OccupancyStatus:
    if code is None:
        return OccupancyStatus.UNKNOWN
    return OCCUPANCY_BY_CODE.get(code, OccupancyStatus.UNKNOWN)


def _opt(msg: Any, name: str) -> Any:
    return getattr(msg, name) if msg.HasField(name) else None


def _translation(ts: Any) -> str:
    return ts.translation[0].text if ts.translation else ""


def _event(stu: Any, name: str) -> StopTimeEvent | None:
    if not stu.HasField(name):
        return None
    ev = getattr(stu, name)
    return StopTimeEvent(
        delay=_opt(ev, "delay"),
        time=normalize_timestamp(_opt(ev, "time")),
        uncertainty=_opt(ev, "uncertainty"),
    )


# ---------------------------------------------------------------------------
# Decoders: bytes in, records out.  Raise on undecodable payloads; the
# client below turns that into an empty feed.
# ---------------------------------------------------------------------------

def parse_feed(payload: bytes) -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(payload)
    return feed


def decode_vehicle_positions(payload: bytes) -> list[VehiclePosition]:
    feed = parse_feed(payload)
    header_ts = normalize_timestamp(_opt(feed.header, "timestamp"))
    vehicles: list[VehiclePosition] = []
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        vp = entity.vehicle
        if not vp.HasField("position") or not vp.HasField("trip"):
            continue
        status = _opt(vp, "current_status")
        vehicles.append(VehiclePosition(
            vehicle_id=(vp.vehicle.id if vp.HasField("vehicle") and vp.vehicle.id else entity.id),
            trip_id=vp.trip.trip_id,
            route_id=vp.trip.route_id,
            lat=vp.position.latitude,
            lon=vp.position.longitude,
            bearing=_opt(vp.position, "bearing"),
            speed=_opt(vp.position, "speed"),
            current_stop_sequence=_opt(vp, "current_stop_sequence"),
            current_status=(
                gtfs_realtime_pb2.VehiclePosition.VehicleStopStatus.Name(status)
                if status is not None else None
            ),
            occupancy=decode_occupancy(_opt(vp, "occupancy_status")),
            timestamp=normalize_timestamp(_opt(vp, "timestamp")) or header_ts,
        ))
    return vehicles


def decode_trip_updates(payload: bytes) -> list[TripUpdate]:
    feed = parse_feed(payload)
    updates: list[TripUpdate] = []
    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        tu = entity.trip_update
        if not tu.HasField("trip"):
            continue
        updates.append(TripUpdate(
            trip_id=tu.trip.trip_id,
            route_id=tu.trip.route_id,
            timestamp=normalize_timestamp(_opt(tu, "timestamp")),
            stop_time_updates=[
                StopTimeUpdate(
                    stop_sequence=_opt(stu, "stop_sequence"),
                    stop_id=_opt(stu, "stop_id") or None,
                    arrival=_event(stu, "arrival"),
                    departure=_event(stu, "departure"),
                )
                for stu in tu.stop_time_update
            ],
        ))
    return updates


def decode_service_alerts(payload: bytes) -> list[ServiceAlert]:
    feed = parse_feed(payload)
    alerts: list[ServiceAlert] = []
    for entity in feed.entity:
        if not entity.HasField("alert"):
            continue
        a = entity.alert
        period = a.active_period[0] if a.active_period else None
        alerts.append(ServiceAlert(
            alert_id=entity.id,
            header=_translation(a.header_text),
            description=_translation(a.description_text),
            informed_entities=[
                InformedEntity(
                    route_id=ie.route_id or None,
                    stop_id=ie.stop_id or None,
                    trip_id=(ie.trip.trip_id or None) if ie.HasField("trip") else None,
                )
                for ie in a.informed_entity
            ],
            start=normalize_timestamp(_opt(period, "start")) if period is not None else None,
            end=normalize_timestamp(_opt(period, "end")) if period is not None else None,
        ))
    return alerts


# ---------------------------------------------------------------------------
# Network client
# ---------------------------------------------------------------------------

class RealtimeFeedClient:
    """
    Fetches and decodes the three GTFS-RT endpoints.

    Never raises past its own boundary: a failed feed is logged at WARNING
    and returned as an empty list.
    """

    def __init__(
        self,
        vehicle_positions_url: str = GTFS_RT_VEHICLE_POSITIONS_URL,
        trip_updates_url: str = GTFS_RT_TRIP_UPDATES_URL,
        alerts_url: str = GTFS_RT_ALERTS_URL,
        api_key: str = GTFS_RT_API_KEY,
        timeout: float = GTFS_RT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.vehicle_positions_url = vehicle_positions_url
        self.trip_updates_url = trip_updates_url
        self.alerts_url = alerts_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def _fetch(self, url: str) -> bytes:
        params = {"key": self._api_key} if self._api_key else {}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(
                url, params=params, headers={"Accept": "application/x-protobuf"}
            )
            response.raise_for_status()
        return response.content

    async def _fetch_decoded(
        self, url: str, decoder: Callable[[bytes], list[T]], label: str
    ) -> list[T]:
        if not url:
            logger.debug("GTFS-RT %s feed not configured; skipping.", label)
            return []
        try:
            records = decoder(await self._fetch(url))
        except Exception as exc:
            logger.warning("GTFS-RT %s feed unavailable (%s): %s", label, url, exc)
            return []
        logger.debug("Decoded %d %s from %s.", len(records), label, url)
        return records

    async def fetch_vehicle_positions(self) -> list[VehiclePosition]:
        return await self._fetch_decoded(
            self.vehicle_positions_url, decode_vehicle_positions, "vehicle positions"
        )

    async def fetch_trip_updates(self) -> list[TripUpdate]:
        return await self._fetch_decoded(
            self.trip_updates_url, decode_trip_updates, "trip updates"
        )

    async def fetch_service_alerts(self) -> list[ServiceAlert]:
        return await self._fetch_decoded(
            self.alerts_url, decode_service_alerts, "service alerts"
        )

    async def fetch_snapshot(self) -> RealtimeSnapshot:
        """Fetch all three feeds concurrently."""
        vehicles, trip_updates, alerts = await asyncio.gather(
            self.fetch_vehicle_positions(),
            self.fetch_trip_updates(),
            self.fetch_service_alerts(),
        )
        return RealtimeSnapshot(
            vehicles=vehicles,
            trip_updates=trip_updates,
            alerts=alerts,
            fetched_at=datetime.now(timezone.utc),
        )

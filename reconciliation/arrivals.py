"""
Joins the static schedule with live GTFS-RT data.

Two-tier model:
  schedule  always present; a stop_time's clock time projected onto the
            next real-world occurrence (today, or tomorrow if already past)
  realtime  optional correction; a TripUpdate's per-stop delay for the
            same trip, matched by stop_sequence first, then by stop_id for
            updates that carry no stop_sequence

If no matching annotation exists the schedule projection stands and the
delay is reported as 0.  Everything here is a pure function of the Catalog
and RealtimeSnapshot passed in; "now" is always an argument.
"""

import logging
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Iterable, Literal, Mapping

from ingestion.catalog import Catalog, StopTime
from ingestion.gtfs_realtime import (
    StopTimeEvent,
    StopTimeUpdate,
    TripUpdate,
    VehiclePosition,
)

logger = logging.getLogger(__name__)

Event = Literal["arrival", "departure"]


@dataclass(frozen=True)
class Arrival:
    estimated: datetime   # projected schedule + delay
    scheduled: str        # HH:MM:SS as published
    delay: int            # seconds applied (0 when no live annotation)
    is_realtime: bool


@dataclass(frozen=True)
class EnrichedVehicle(VehiclePosition):
    route_name: str = ""
    route_color: str | None = None
    headsign: str | None = None


def parse_time_of_day(hms: str) -> tuple[int, int, int]:
    """Split a GTFS HH:MM:SS string.  Hours may exceed 23."""
    h, m, s = hms.strip().split(":")
    hours, minutes, seconds = int(h), int(m), int(s)
    if hours < 0 or not 0 <= minutes < 60 or not 0 <= seconds < 60:
        raise ValueError(f"Invalid GTFS time {hms!r}")
    return hours, minutes, seconds


def next_occurrence(time_of_day: str, now: datetime) -> datetime:
    """
    Project a service time-of-day onto the next real-world instant.

    Post-midnight service ("25:10:00") wraps to 01:10.  A time strictly
    earlier than now rolls forward to tomorrow; this models recurring daily
    service without a calendar-exception model.  The result carries now's
    tzinfo.
    """
    hours, minutes, seconds = parse_time_of_day(time_of_day)
    scheduled = now.replace(hour=hours % 24, minute=minutes, second=seconds, microsecond=0)
    if scheduled < now:
        scheduled += timedelta(days=1)
    return scheduled


def index_trip_updates(trip_updates: Iterable[TripUpdate]) -> dict[str, TripUpdate]:
    """trip_id → TripUpdate; the first update for a trip wins."""
    index: dict[str, TripUpdate] = {}
    for tu in trip_updates:
        index.setdefault(tu.trip_id, tu)
    return index


def find_stop_time_update(
    trip_update: TripUpdate, stop_sequence: int, stop_id: str
) -> StopTimeUpdate | None:
    for stu in trip_update.stop_time_updates:
        if stu.stop_sequence is not None and stu.stop_sequence == stop_sequence:
            return stu
    for stu in trip_update.stop_time_updates:
        if stu.stop_sequence is None and stu.stop_id == stop_id:
            return stu
    return None


def _event_delay(stu: StopTimeUpdate, event: Event) -> int | None:
    primary: StopTimeEvent | None = getattr(stu, event)
    other: StopTimeEvent | None = stu.arrival if event == "departure" else stu.departure
    for ev in (primary, other):
        if ev is not None and ev.delay is not None:
            return ev.delay
    return None


def adjusted_arrival(
    stop_time: StopTime,
    now: datetime,
    trip_updates: Mapping[str, TripUpdate],
    event: Event = "departure",
) -> Arrival | None:
    """
    Live-adjusted instant for one (trip, stop) pair.

    event selects which scheduled clock time is projected and which delay is
    preferred; the other event's delay is used when the preferred one is
    absent.  Returns None when the stop_time has no usable clock time
    (untimed stops on some feeds).
    """
    scheduled = stop_time.departure_time if event == "departure" else stop_time.arrival_time
    try:
        projected = next_occurrence(scheduled, now)
    except ValueError:
        logger.debug(
            "Skipping untimed stop_time trip=%s stop=%s seq=%s (%r).",
            stop_time.trip_id, stop_time.stop_id, stop_time.stop_sequence, scheduled,
        )
        return None

    delay: int | None = None
    tu = trip_updates.get(stop_time.trip_id)
    if tu is not None:
        stu = find_stop_time_update(tu, stop_time.stop_sequence, stop_time.stop_id)
        if stu is not None:
            delay = _event_delay(stu, event)

    if delay is None:
        return Arrival(estimated=projected, scheduled=scheduled, delay=0, is_realtime=False)
    return Arrival(
        estimated=projected + timedelta(seconds=delay),
        scheduled=scheduled,
        delay=delay,
        is_realtime=True,
    )


def vehicles_by_trip(vehicles: Iterable[VehiclePosition]) -> dict[str, VehiclePosition]:
    """trip_id → vehicle currently serving it; vehicles without a trip are ignored."""
    index: dict[str, VehiclePosition] = {}
    for v in vehicles:
        if v.trip_id:
            index.setdefault(v.trip_id, v)
    return index


def enrich_vehicles(vehicles: Iterable[VehiclePosition], catalog: Catalog) -> list[EnrichedVehicle]:
    """
    Attach route display name, colour and trip headsign to live vehicles.

    Pure join by trip_id / route_id.  A vehicle whose trip or route is not in
    the catalog keeps its raw route_id as route_name.
    """
    enriched = []
    for v in vehicles:
        trip = catalog.trip(v.trip_id) if v.trip_id else None
        route_id = v.route_id or (trip.route_id if trip else "")
        route = catalog.route(route_id) if route_id else None
        base = {f.name: getattr(v, f.name) for f in fields(VehiclePosition)}
        base["route_id"] = route_id
        enriched.append(EnrichedVehicle(
            **base,
            route_name=route.display_name if route else route_id,
            route_color=route.color if route else None,
            headsign=trip.headsign if trip else None,
        ))
    return enriched

"""
Single-trip directions search between an origin and a destination stop.

Algorithm:
  1. Walk every trip in catalog (feed) order and take its stop_times sorted
     by stop_sequence.
  2. A trip is a candidate only if it visits the origin and then, at a
     strictly larger stop_sequence, the destination.  Direction matters: on
     a loop route that passes the destination before the origin, the
     destination visit must come *after* the boarding visit.
  3. For each candidate, estimate the boarding time at the origin with
     reconciliation.adjusted_arrival(event="departure").
  4. Drop candidates that have already departed (negative wait) or whose wait
     exceeds max_wait_minutes.

Survivors are returned in discovery order as scoring.Candidate records,
ready for scoring.prioritize().  No transfers: every option is one trip.
A stop pair with no candidates yields []; "no service" is not an error.
A query whose origin and destination are the same stop also yields [].
"""

import logging
from datetime import datetime
from typing import Collection

from errors import NotFound
from ingestion.catalog import Catalog, StopTime
from ingestion.gtfs_realtime import OccupancyStatus, RealtimeSnapshot
from reconciliation.arrivals import adjusted_arrival, index_trip_updates, vehicles_by_trip
from scoring.prioritization import Candidate

logger = logging.getLogger(__name__)


def boarding_pair(
    stop_times: list[StopTime], origin_stop_id: str, destination_stop_id: str
) -> tuple[StopTime, StopTime] | None:
    """
    First origin visit and the first destination visit after it, or None.

    stop_times must already be sorted by stop_sequence.
    """
    origin: StopTime | None = None
    for st in stop_times:
        if origin is None:
            if st.stop_id == origin_stop_id:
                origin = st
        elif st.stop_id == destination_stop_id and st.stop_sequence > origin.stop_sequence:
            return origin, st
    return None


def find_options(
    catalog: Catalog,
    realtime: RealtimeSnapshot,
    origin_stop_id: str,
    destination_stop_id: str,
    now: datetime,
    max_wait_minutes: float,
    route_ids: Collection[str] | None = None,
) -> list[Candidate]:
    """
    Return feasible boarding options from origin to destination, unranked.

    Args:
        catalog:             Static schedule snapshot.
        realtime:            Live snapshot; only trip_updates and vehicles are read.
        origin_stop_id:      GTFS stop_id to board at.
        destination_stop_id: GTFS stop_id to alight at.
        now:                 Query instant (tz-aware, agency zone).
        max_wait_minutes:    Upper bound on wait at the origin.
        route_ids:           Optional route filter (e.g. a favorite's preferred
                             routes); empty or None means all routes.

    Raises:
        NotFound: If either stop is not in the catalog.
    """
    origin = catalog.stop(origin_stop_id)
    if origin is None:
        raise NotFound("stop", origin_stop_id)
    if catalog.stop(destination_stop_id) is None:
        raise NotFound("stop", destination_stop_id)
    if origin_stop_id == destination_stop_id:
        logger.info("Directions %s → %s: same stop, no options.", origin_stop_id, destination_stop_id)
        return []

    updates = index_trip_updates(realtime.trip_updates)
    live_vehicles = vehicles_by_trip(realtime.vehicles)
    max_wait_seconds = max_wait_minutes * 60

    candidates: list[Candidate] = []
    examined = 0
    for trip in catalog.trips:
        if route_ids and trip.route_id not in route_ids:
            continue
        pair = boarding_pair(
            catalog.stop_times_for_trip(trip.trip_id), origin_stop_id, destination_stop_id
        )
        if pair is None:
            continue
        examined += 1
        route = catalog.route(trip.route_id)
        if route is None:
            continue

        boarding, _ = pair
        arrival = adjusted_arrival(boarding, now, updates, event="departure")
        if arrival is None:
            continue
        wait = (arrival.estimated - now).total_seconds()
        if wait < 0 or wait > max_wait_seconds:
            continue

        vehicle = live_vehicles.get(trip.trip_id)
        candidates.append(Candidate(
            trip_id=trip.trip_id,
            route_id=trip.route_id,
            route_name=route.display_name,
            stop_id=origin_stop_id,
            stop_name=origin.name,
            estimated_arrival=arrival.estimated,
            scheduled_arrival=arrival.scheduled,
            delay=arrival.delay,
            occupancy_status=vehicle.occupancy if vehicle else OccupancyStatus.UNKNOWN,
            headsign=trip.headsign,
        ))

    logger.info(
        "Directions %s → %s: %d serving trips, %d within %s min.",
        origin_stop_id, destination_stop_id, examined, len(candidates), max_wait_minutes,
    )
    return candidates

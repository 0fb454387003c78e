"""
Unit tests for routing/engine.py.

Uses the shared campus network from conftest; "now" is injected so every
expectation is a fixed instant.
"""

from datetime import datetime

import pytest

from conftest import NOW, TZ
from errors import NotFound
from ingestion.catalog import Catalog, Route, Stop, StopTime, Trip
from ingestion.gtfs_realtime import (
    OccupancyStatus,
    RealtimeSnapshot,
    StopTimeEvent,
    StopTimeUpdate,
    TripUpdate,
    VehiclePosition,
)
from routing.engine import boarding_pair, find_options

NO_REALTIME = RealtimeSnapshot()


def scenario_catalog() -> Catalog:
    """Trip T: stop A at sequence 3 (08:00), stop B at sequence 7."""
    return Catalog(
        routes=[Route("R", short_name="X")],
        stops=[Stop("A", "Stop A", 0.0, 0.0), Stop("B", "Stop B", 0.0, 0.1)],
        trips=[Trip("T", "R")],
        stop_times=[
            StopTime("T", "A", 3, "08:00:00", "08:00:00"),
            StopTime("T", "B", 7, "08:12:00", "08:12:00"),
        ],
    )


def delay_update(trip_id: str, seq: int, delay: int) -> RealtimeSnapshot:
    return RealtimeSnapshot(trip_updates=[
        TripUpdate(trip_id, stop_time_updates=[
            StopTimeUpdate(stop_sequence=seq, departure=StopTimeEvent(delay=delay)),
        ]),
    ])


# ---------------------------------------------------------------------------
# boarding_pair
# ---------------------------------------------------------------------------

class TestBoardingPair:
    def test_forward_pair(self, catalog):
        origin, dest = boarding_pair(catalog.stop_times_for_trip("T1"), "LIB", "EV")
        assert (origin.stop_sequence, dest.stop_sequence) == (1, 3)

    def test_reverse_direction_is_none(self, catalog):
        assert boarding_pair(catalog.stop_times_for_trip("T1"), "EV", "LIB") is None

    def test_same_stop_is_none(self, catalog):
        assert boarding_pair(catalog.stop_times_for_trip("T1"), "LIB", "LIB") is None

    def test_loop_revisit_uses_later_destination(self):
        sts = [
            StopTime("L", "HUB", 1, "09:00:00", "09:00:00"),
            StopTime("L", "LIB", 2, "09:05:00", "09:05:00"),
            StopTime("L", "SCI", 3, "09:10:00", "09:10:00"),
            StopTime("L", "HUB", 4, "09:15:00", "09:15:00"),
        ]
        origin, dest = boarding_pair(sts, "LIB", "HUB")
        assert origin.stop_sequence == 2
        assert dest.stop_sequence == 4


# ---------------------------------------------------------------------------
# find_options
# ---------------------------------------------------------------------------

class TestFindOptions:
    def test_delay_shifts_boarding_time(self):
        options = find_options(
            scenario_catalog(), delay_update("T", 3, 120), "A", "B",
            now=datetime(2026, 3, 10, 7, 59, tzinfo=TZ), max_wait_minutes=30,
        )
        (option,) = options
        assert option.estimated_arrival == datetime(2026, 3, 10, 8, 2, tzinfo=TZ)
        assert option.delay == 120
        assert option.scheduled_arrival == "08:00:00"

    def test_no_update_uses_schedule(self):
        (option,) = find_options(
            scenario_catalog(), NO_REALTIME, "A", "B",
            now=datetime(2026, 3, 10, 7, 59, tzinfo=TZ), max_wait_minutes=30,
        )
        assert option.estimated_arrival == datetime(2026, 3, 10, 8, 0, tzinfo=TZ)
        assert option.delay == 0

    def test_same_origin_and_destination_is_empty(self):
        catalog = Catalog(
            routes=[Route("R", short_name="X")],
            stops=[Stop("A", "Stop A", 0.0, 0.0), Stop("B", "Stop B", 0.0, 0.1)],
            trips=[Trip("T", "R")],
            stop_times=[
                StopTime("T", "A", 3, "08:00:00", "08:00:00"),
                StopTime("T", "B", 7, "08:12:00", "08:12:00"),
                StopTime("T", "A", 9, "08:20:00", "08:20:00"),
            ],
        )
        options = find_options(
            catalog, NO_REALTIME, "A", "A",
            now=datetime(2026, 3, 10, 7, 59, tzinfo=TZ), max_wait_minutes=30,
        )
        assert options == []

    def test_departed_trip_rolls_to_tomorrow_and_is_excluded(self):
        options = find_options(
            scenario_catalog(), NO_REALTIME, "A", "B",
            now=datetime(2026, 3, 10, 8, 30, tzinfo=TZ), max_wait_minutes=30,
        )
        assert options == []

    def test_delay_that_makes_departure_past_is_excluded(self):
        options = find_options(
            scenario_catalog(), delay_update("T", 3, -120), "A", "B",
            now=datetime(2026, 3, 10, 7, 59, tzinfo=TZ), max_wait_minutes=30,
        )
        assert options == []

    def test_max_wait_bounds_candidates(self, catalog):
        options = find_options(catalog, NO_REALTIME, "LIB", "EV", now=NOW, max_wait_minutes=10)
        assert [o.trip_id for o in options] == ["T1"]

    def test_discovery_order(self, catalog):
        options = find_options(catalog, NO_REALTIME, "LIB", "SCI", now=NOW, max_wait_minutes=60)
        assert [o.trip_id for o in options] == ["T1", "T2"]

    def test_loop_route_direction(self, catalog):
        # T3 serves SCI → LIB only
        forward = find_options(catalog, NO_REALTIME, "SCI", "LIB", now=NOW, max_wait_minutes=60)
        assert [o.trip_id for o in forward] == ["T3"]
        backward = find_options(catalog, NO_REALTIME, "LIB", "TATE", now=NOW, max_wait_minutes=60)
        assert [o.trip_id for o in backward] == ["T3"]
        assert all(o.trip_id != "T3" for o in find_options(
            catalog, NO_REALTIME, "LIB", "SCI", now=NOW, max_wait_minutes=60,
        ))

    def test_route_filter(self, catalog):
        options = find_options(
            catalog, NO_REALTIME, "LIB", "SCI", now=NOW, max_wait_minutes=60, route_ids={"R2"},
        )
        assert options == []

    def test_empty_route_filter_means_all(self, catalog):
        options = find_options(
            catalog, NO_REALTIME, "LIB", "SCI", now=NOW, max_wait_minutes=60, route_ids=set(),
        )
        assert len(options) == 2

    def test_candidate_fields(self, catalog):
        option = find_options(catalog, NO_REALTIME, "LIB", "EV", now=NOW, max_wait_minutes=10)[0]
        assert option.route_id == "R1"
        assert option.route_name == "EW"
        assert option.stop_id == "LIB"
        assert option.stop_name == "Main Library"
        assert option.headsign == "East Village"

    def test_occupancy_from_vehicle_on_trip(self, catalog):
        realtime = RealtimeSnapshot(vehicles=[
            VehiclePosition("bus-7", "T1", "R1", 33.95, -83.37, occupancy=OccupancyStatus.FULL),
        ])
        options = find_options(catalog, realtime, "LIB", "SCI", now=NOW, max_wait_minutes=60)
        assert [o.occupancy_status for o in options] == [
            OccupancyStatus.FULL, OccupancyStatus.UNKNOWN,
        ]

    def test_trip_with_missing_route_is_skipped(self, catalog):
        orphan = Catalog(
            routes=[],
            stops=catalog.stops,
            trips=catalog.trips,
            stop_times=catalog.stop_times,
        )
        assert find_options(orphan, NO_REALTIME, "LIB", "SCI", now=NOW, max_wait_minutes=60) == []

    @pytest.mark.parametrize("origin,dest", [("NOPE", "SCI"), ("LIB", "NOPE")])
    def test_unknown_stop_raises(self, catalog, origin, dest):
        with pytest.raises(NotFound, match="NOPE"):
            find_options(catalog, NO_REALTIME, origin, dest, now=NOW, max_wait_minutes=30)

    def test_no_service_between_stops_is_empty(self, catalog):
        assert find_options(catalog, NO_REALTIME, "EV", "TATE", now=NOW, max_wait_minutes=60) == []

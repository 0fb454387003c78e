"""
Shared fixtures: a small campus network and a stub realtime feed client.

Network (all times HH:MM:SS, service day of NOW):

  R1 "EW"  T1  LIB(1) 08:00  SCI(2) 08:05  EV(3) 08:10
           T2  LIB(1) 08:20  SCI(2) 08:25  EV(3) 08:30
  R2 "LP"  T3  SCI(1) 08:03  LIB(2) 08:06  TATE(3) 08:09    (loop: SCI before LIB)

NOW is 07:59 America/New_York on 2026-03-10.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from ingestion.catalog import Catalog, Route, ShapePoint, Stop, StopTime, Trip

TZ = ZoneInfo("America/New_York")
NOW = datetime(2026, 3, 10, 7, 59, tzinfo=TZ)


def make_catalog() -> Catalog:
    return Catalog(
        routes=[
            Route("R1", short_name="EW", long_name="East-West", color="BA0C2F"),
            Route("R2", short_name="LP", long_name="Campus Loop"),
        ],
        stops=[
            Stop("LIB", "Main Library", 33.9550, -83.3740),
            Stop("SCI", "Science Center", 33.9430, -83.3750),
            Stop("EV", "East Village", 33.9420, -83.3660),
            Stop("TATE", "Tate Center", 33.9505, -83.3760),
        ],
        trips=[
            Trip("T1", "R1", service_id="WK", headsign="East Village", shape_id="S1"),
            Trip("T2", "R1", service_id="WK", headsign="East Village", shape_id="S1"),
            Trip("T3", "R2", service_id="WK", headsign="Loop"),
        ],
        stop_times=[
            StopTime("T1", "LIB", 1, "08:00:00", "08:00:00"),
            StopTime("T1", "SCI", 2, "08:05:00", "08:05:00"),
            StopTime("T1", "EV", 3, "08:10:00", "08:10:00"),
            StopTime("T2", "LIB", 1, "08:20:00", "08:20:00"),
            StopTime("T2", "SCI", 2, "08:25:00", "08:25:00"),
            StopTime("T2", "EV", 3, "08:30:00", "08:30:00"),
            StopTime("T3", "SCI", 1, "08:03:00", "08:03:00"),
            StopTime("T3", "LIB", 2, "08:06:00", "08:06:00"),
            StopTime("T3", "TATE", 3, "08:09:00", "08:09:00"),
        ],
        shapes=[
            ShapePoint("S1", 33.9420, -83.3660, 2),
            ShapePoint("S1", 33.9550, -83.3740, 1),
        ],
    )


class StubFeeds:
    """Stands in for RealtimeFeedClient; returns canned decoded records."""

    def __init__(self, vehicles=None, trip_updates=None, alerts=None):
        self.vehicles = vehicles or []
        self.trip_updates = trip_updates or []
        self.alerts = alerts or []
        self.vehicle_positions_url = "https://feeds.test/vehicles"
        self.trip_updates_url = "https://feeds.test/trips"
        self.alerts_url = ""

    async def fetch_vehicle_positions(self):
        return list(self.vehicles)

    async def fetch_trip_updates(self):
        return list(self.trip_updates)

    async def fetch_service_alerts(self):
        return list(self.alerts)


class StubCatalogStore:
    """Stands in for StaticCatalogStore with a fixed Catalog."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self.refreshed = 0

    async def get_catalog(self) -> Catalog:
        return self.catalog

    async def refresh(self) -> Catalog:
        self.refreshed += 1
        return self.catalog

    def status(self) -> dict:
        return {
            "loaded": True,
            "loading": False,
            "expires_at": 1_900_000_000.0,
            "counts": self.catalog.counts(),
            "cache": {"hits": 0, "misses": 1, "loads": 1, "failures": 0},
        }


@pytest.fixture
def catalog() -> Catalog:
    return make_catalog()

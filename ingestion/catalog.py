"""
In-memory snapshot of the GTFS static feed.

One Catalog is one cache generation: it is built once by
ingestion.gtfs_static.parse_catalog() and replaced wholesale on refresh,
never mutated.  Lookup indexes are built eagerly in __post_init__ so
request handlers only ever read.

GTFS time fields (arrival_time, departure_time) stay HH:MM:SS strings
because GTFS allows values >= 24:00:00 for trips crossing midnight.
"""

from collections import defaultdict
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Route:
    route_id: str
    short_name: str = ""
    long_name: str = ""
    route_type: str = ""
    color: str | None = None
    text_color: str | None = None

    @property
    def display_name(self) -> str:
        return self.short_name or self.long_name or self.route_id


@dataclass(frozen=True)
class Stop:
    stop_id: str
    name: str
    lat: float
    lon: float
    code: str | None = None


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str = ""
    headsign: str | None = None
    direction_id: int | None = None
    shape_id: str | None = None


@dataclass(frozen=True)
class StopTime:
    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_time: str    # HH:MM:SS (may exceed 24:00:00)
    departure_time: str  # HH:MM:SS (may exceed 24:00:00)


@dataclass(frozen=True)
class ShapePoint:
    shape_id: str
    lat: float
    lon: float
    sequence: int


@dataclass
class Catalog:
    routes: list[Route]
    stops: list[Stop]
    trips: list[Trip]
    stop_times: list[StopTime]
    shapes: list[ShapePoint] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._routes = {r.route_id: r for r in self.routes}
        self._stops = {s.stop_id: s for s in self.stops}
        self._trips = {t.trip_id: t for t in self.trips}

        by_stop: dict[str, list[StopTime]] = defaultdict(list)
        by_trip: dict[str, list[StopTime]] = defaultdict(list)
        for st in self.stop_times:
            by_stop[st.stop_id].append(st)
            by_trip[st.trip_id].append(st)
        self._stop_times_by_stop = dict(by_stop)
        self._stop_times_by_trip = {
            trip_id: sorted(rows, key=lambda st: st.stop_sequence)
            for trip_id, rows in by_trip.items()
        }

        by_shape: dict[str, list[ShapePoint]] = defaultdict(list)
        for pt in self.shapes:
            by_shape[pt.shape_id].append(pt)
        self._shapes = {
            shape_id: sorted(pts, key=lambda p: p.sequence)
            for shape_id, pts in by_shape.items()
        }

    def route(self, route_id: str) -> Route | None:
        return self._routes.get(route_id)

    def stop(self, stop_id: str) -> Stop | None:
        return self._stops.get(stop_id)

    def trip(self, trip_id: str) -> Trip | None:
        return self._trips.get(trip_id)

    def stop_times_for_stop(self, stop_id: str) -> list[StopTime]:
        """Stop-times at stop_id, in feed order."""
        return list(self._stop_times_by_stop.get(stop_id, ()))

    def stop_times_for_trip(self, trip_id: str) -> list[StopTime]:
        """Stop-times of trip_id, sorted by stop_sequence."""
        return list(self._stop_times_by_trip.get(trip_id, ()))

    def route_shape(self, route_id: str) -> list[ShapePoint]:
        """
        Shape points for the route's representative trip (the first trip in
        feed order that carries a shape_id), sorted by sequence.
        """
        for trip in self.trips:
            if trip.route_id == route_id and trip.shape_id:
                return list(self._shapes.get(trip.shape_id, ()))
        return []

    def counts(self) -> dict[str, int]:
        return {
            "routes": len(self.routes),
            "stops": len(self.stops),
            "trips": len(self.trips),
            "stop_times": len(self.stop_times),
            "shape_points": len(self.shapes),
        }

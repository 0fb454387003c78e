"""
Query operations over the current static + realtime snapshots.

TransitService is constructed once at process start (api.main lifespan) with
the shared StaticCatalogStore and RealtimeFeedClient and handed to every
request.  Each operation:

  1. gets the Catalog through the single-flight cache (may raise
     FetchFailure / ParseFailure on a cold cache),
  2. fetches only the realtime feeds it needs (never raises; a failed feed
     is just empty),
  3. runs the pure reconciliation / directions / scoring functions.

Unknown stop or route ids raise NotFound.  "now" is injectable everywhere
for tests; it defaults to the current time in AGENCY_TIMEZONE.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Collection
from zoneinfo import ZoneInfo

from config import (
    AGENCY_TIMEZONE,
    DEFAULT_MAX_WAIT_MINUTES,
    SCHEDULE_HORIZON_HOURS,
    SCHEDULE_LIMIT,
)
from errors import NotFound
from ingestion.catalog import Catalog, Route, ShapePoint, Stop
from ingestion.gtfs_realtime import RealtimeFeedClient, RealtimeSnapshot, ServiceAlert
from ingestion.gtfs_static import StaticCatalogStore
from reconciliation.arrivals import EnrichedVehicle, adjusted_arrival, enrich_vehicles, index_trip_updates
from routing.engine import find_options
from scoring.prioritization import PriorityMode, RankedOption, Recommendation, prioritize, recommend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleEntry:
    stop_id: str
    stop_name: str
    trip_id: str
    route_id: str
    route_name: str
    headsign: str | None
    scheduled_arrival: str
    estimated_arrival: datetime
    delay: int
    is_realtime: bool


@dataclass(frozen=True)
class DirectionsResult:
    from_stop: Stop
    to_stop: Stop
    priority_mode: PriorityMode
    options: list[RankedOption] = field(default_factory=list)
    recommendation: Recommendation | None = None


class TransitService:
    def __init__(
        self,
        catalog_store: StaticCatalogStore,
        feeds: RealtimeFeedClient,
        timezone: str = AGENCY_TIMEZONE,
    ) -> None:
        self.catalog_store = catalog_store
        self.feeds = feeds
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    async def _catalog(self) -> Catalog:
        return await self.catalog_store.get_catalog()

    # ------------------------------------------------------------------
    # Static lookups
    # ------------------------------------------------------------------

    async def list_routes(self) -> list[Route]:
        return list((await self._catalog()).routes)

    async def list_stops(self) -> list[Stop]:
        return list((await self._catalog()).stops)

    async def stop(self, stop_id: str) -> Stop:
        stop = (await self._catalog()).stop(stop_id)
        if stop is None:
            raise NotFound("stop", stop_id)
        return stop

    async def route_shape(self, route_id: str) -> list[ShapePoint]:
        catalog = await self._catalog()
        if catalog.route(route_id) is None:
            raise NotFound("route", route_id)
        return catalog.route_shape(route_id)

    # ------------------------------------------------------------------
    # Reconciled queries
    # ------------------------------------------------------------------

    async def schedule(
        self,
        stop_id: str,
        route_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ScheduleEntry]:
        """
        Upcoming arrivals at stop_id over the next SCHEDULE_HORIZON_HOURS,
        live-adjusted, soonest first, at most SCHEDULE_LIMIT entries.
        """
        catalog = await self._catalog()
        stop = catalog.stop(stop_id)
        if stop is None:
            raise NotFound("stop", stop_id)
        if route_id is not None and catalog.route(route_id) is None:
            raise NotFound("route", route_id)
        now = now or self.now()

        updates = index_trip_updates(await self.feeds.fetch_trip_updates())
        horizon = now + timedelta(hours=SCHEDULE_HORIZON_HOURS)

        entries: list[ScheduleEntry] = []
        for st in catalog.stop_times_for_stop(stop_id):
            trip = catalog.trip(st.trip_id)
            if trip is None or (route_id is not None and trip.route_id != route_id):
                continue
            route = catalog.route(trip.route_id)
            if route is None:
                continue
            arrival = adjusted_arrival(st, now, updates, event="arrival")
            if arrival is None or not now <= arrival.estimated <= horizon:
                continue
            entries.append(ScheduleEntry(
                stop_id=stop_id,
                stop_name=stop.name,
                trip_id=trip.trip_id,
                route_id=trip.route_id,
                route_name=route.display_name,
                headsign=trip.headsign,
                scheduled_arrival=arrival.scheduled,
                estimated_arrival=arrival.estimated,
                delay=arrival.delay,
                is_realtime=arrival.is_realtime,
            ))

        entries.sort(key=lambda e: e.estimated_arrival)
        return entries[:SCHEDULE_LIMIT]

    async def directions(
        self,
        from_stop_id: str,
        to_stop_id: str,
        priority_mode: PriorityMode = "time",
        max_wait_minutes: float = DEFAULT_MAX_WAIT_MINUTES,
        time_weight: float | None = None,
        route_ids: Collection[str] | None = None,
        now: datetime | None = None,
    ) -> DirectionsResult:
        """Ranked single-trip boarding options; an empty list means no service."""
        catalog = await self._catalog()
        for stop_id in (from_stop_id, to_stop_id):
            if catalog.stop(stop_id) is None:
                raise NotFound("stop", stop_id)
        now = now or self.now()
        vehicles, trip_updates = await asyncio.gather(
            self.feeds.fetch_vehicle_positions(),
            self.feeds.fetch_trip_updates(),
        )
        realtime = RealtimeSnapshot(vehicles=vehicles, trip_updates=trip_updates)

        candidates = find_options(
            catalog, realtime, from_stop_id, to_stop_id,
            now=now, max_wait_minutes=max_wait_minutes, route_ids=route_ids,
        )
        options = prioritize(candidates, priority_mode, now=now, time_weight=time_weight)
        return DirectionsResult(
            from_stop=catalog.stop(from_stop_id),
            to_stop=catalog.stop(to_stop_id),
            priority_mode=priority_mode,
            options=options,
            recommendation=recommend(options, priority_mode, now=now),
        )

    async def vehicles(self, route_id: str | None = None) -> list[EnrichedVehicle]:
        catalog = await self._catalog()
        if route_id is not None and catalog.route(route_id) is None:
            raise NotFound("route", route_id)
        enriched = enrich_vehicles(await self.feeds.fetch_vehicle_positions(), catalog)
        if route_id is not None:
            enriched = [v for v in enriched if v.route_id == route_id]
        return enriched

    async def alerts(
        self, route_id: str | None = None, stop_id: str | None = None
    ) -> list[ServiceAlert]:
        alerts = await self.feeds.fetch_service_alerts()
        if route_id is None and stop_id is None:
            return alerts
        return [a for a in alerts if a.affects(route_id=route_id, stop_id=stop_id)]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def health(self) -> dict:
        return {
            "catalog": self.catalog_store.status(),
            "feeds": {
                "vehicle_positions": bool(self.feeds.vehicle_positions_url),
                "trip_updates": bool(self.feeds.trip_updates_url),
                "alerts": bool(self.feeds.alerts_url),
            },
        }

    async def refresh_catalog(self) -> dict[str, int]:
        catalog = await self.catalog_store.refresh()
        logger.info("Catalog refreshed on demand: %s", catalog.counts())
        return catalog.counts()

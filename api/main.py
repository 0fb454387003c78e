"""
FastAPI application entry point.

On startup:
  1. Initialise the database schema (favorites, preferences, gtfs_cache).
  2. Build the process-wide SingleFlightCache (optionally backed by the
     gtfs_cache table), StaticCatalogStore, RealtimeFeedClient and
     TransitService, and park the service on app.state.

There is no background scheduler: the static catalog loads lazily on the
first request after its TTL lapses, and realtime feeds are fetched per
request.

Endpoints (v1):
  GET    /routes
  GET    /routes/{route_id}/shape
  GET    /stops
  GET    /schedule?stop_id=<id>&route_id=<id>
  GET    /directions?from=<id>&to=<id>&priority=<time|occupancy>&max_wait=<min>
  GET    /vehicles?route_id=<id>
  GET    /alerts?route_id=<id>&stop_id=<id>
  GET    /favorites            POST /favorites
  PUT    /favorites            DELETE /favorites?id=<id>
  GET    /preferences/{key}    PUT/DELETE /preferences/{key}
  GET    /health
  POST   /ingest/gtfs-static
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from api.schemas import (
    AlertResult,
    DirectionsResponse,
    FavoriteCreate,
    FavoriteResult,
    FavoriteUpdate,
    HealthResponse,
    PreferenceResult,
    PreferenceValue,
    PriorityMode,
    RouteResult,
    ScheduleResponse,
    ShapePointResult,
    StatusResponse,
    StopResult,
    VehicleResult,
)
from cache.single_flight import SingleFlightCache
from config import (
    API_HOST,
    API_PORT,
    CATALOG_CACHE_BACKEND,
    CATALOG_LOAD_TIMEOUT_SECONDS,
    CORS_ORIGINS,
    DEFAULT_MAX_WAIT_MINUTES,
    INGEST_API_KEY,
)
from db import queries
from db.session import get_session, init_db
from errors import FetchFailure, NotFound, ParseFailure
from ingestion.catalog import Stop
from ingestion.gtfs_realtime import RealtimeFeedClient
from ingestion.gtfs_static import StaticCatalogStore
from scoring.prioritization import RankedOption
from service.transit import TransitService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_ingest_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _require_ingest_key(key: str | None = Security(_ingest_key_header)) -> None:
    """
    Optional API-key guard for the ingest endpoint.

    If INGEST_API_KEY is not set the endpoint is open (local dev / testing).
    If it is set, the request must include the matching X-API-Key header.
    """
    if not INGEST_API_KEY:
        return  # no key configured → open
    if key != INGEST_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key header.")


def build_service() -> TransitService:
    store = None
    if CATALOG_CACHE_BACKEND == "sql":
        store = queries.SqlCacheStore()
        purged = store.clear_expired()
        logger.info("Persistent catalog cache enabled (%d expired records purged).", purged)
    cache = SingleFlightCache(load_timeout=CATALOG_LOAD_TIMEOUT_SECONDS, store=store)
    return TransitService(StaticCatalogStore(cache), RealtimeFeedClient())


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database initialised.")
    app.state.service = build_service()
    logger.info("Transit service ready; catalog loads on first request.")
    yield


app = FastAPI(
    title="Campus Transit Tracker",
    description="Live arrivals and single-trip directions for campus buses.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


def get_service(request: Request) -> TransitService:
    return request.app.state.service


@app.exception_handler(NotFound)
async def _not_found(_: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(FetchFailure)
@app.exception_handler(ParseFailure)
async def _upstream_failure(_: Request, exc: Exception) -> JSONResponse:
    logger.error("Static catalog unavailable: %s", exc)
    return JSONResponse(
        status_code=502, content={"detail": f"Transit schedule data unavailable: {exc}"}
    )


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _stop(s: Stop) -> dict[str, Any]:
    return {"stop_id": s.stop_id, "stop_name": s.name, "lat": s.lat, "lon": s.lon}


def _option(o: RankedOption) -> dict[str, Any]:
    return {
        "trip_id": o.trip_id,
        "route_id": o.route_id,
        "route_name": o.route_name,
        "headsign": o.headsign,
        "stop_id": o.stop_id,
        "stop_name": o.stop_name,
        "estimated_arrival": o.estimated_arrival,
        "scheduled_arrival": o.scheduled_arrival,
        "delay": o.delay,
        "occupancy_status": o.occupancy_status.value,
        "occupancy_score": round(o.occupancy_score, 2),
        "time_score": round(o.time_score, 2),
        "combined_score": round(o.combined_score, 2),
    }


# ---------------------------------------------------------------------------
# Transit queries
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health(service: TransitService = Depends(get_service)) -> HealthResponse:
    """Catalog freshness and feed configuration; never triggers a load."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **service.health(),
    }


@app.get("/routes", response_model=list[RouteResult])
async def list_routes(service: TransitService = Depends(get_service)) -> list[RouteResult]:
    return [
        {
            "route_id": r.route_id,
            "route_name": r.display_name,
            "route_short_name": r.short_name,
            "route_long_name": r.long_name,
            "route_color": r.color,
            "route_text_color": r.text_color,
        }
        for r in await service.list_routes()
    ]


@app.get("/routes/{route_id}/shape", response_model=list[ShapePointResult])
async def route_shape(
    route_id: str, service: TransitService = Depends(get_service)
) -> list[ShapePointResult]:
    return [
        {"lat": p.lat, "lon": p.lon, "sequence": p.sequence}
        for p in await service.route_shape(route_id)
    ]


@app.get("/stops", response_model=list[StopResult])
async def list_stops(service: TransitService = Depends(get_service)) -> list[StopResult]:
    return [_stop(s) for s in await service.list_stops()]


@app.get("/schedule", response_model=ScheduleResponse)
async def schedule(
    stop_id: str = Query(..., min_length=1, description="GTFS stop_id"),
    route_id: str | None = Query(None, description="Only arrivals on this route"),
    service: TransitService = Depends(get_service),
) -> ScheduleResponse:
    """Next arrivals at a stop, schedule adjusted by live trip updates."""
    entries = await service.schedule(stop_id, route_id=route_id)
    stop = await service.stop(stop_id)
    return {
        "stop_id": stop.stop_id,
        "stop_name": stop.name,
        "schedule": [
            {
                "trip_id": e.trip_id,
                "route_id": e.route_id,
                "route_name": e.route_name,
                "headsign": e.headsign,
                "scheduled_arrival": e.scheduled_arrival,
                "estimated_arrival": e.estimated_arrival,
                "delay": e.delay,
                "is_realtime": e.is_realtime,
            }
            for e in entries
        ],
    }


@app.get("/directions", response_model=DirectionsResponse)
async def directions(
    from_stop_id: str = Query(..., alias="from", min_length=1, description="Origin stop_id"),
    to_stop_id: str = Query(..., alias="to", min_length=1, description="Destination stop_id"),
    priority: PriorityMode = Query("time", description="Rank by 'time' or 'occupancy'"),
    max_wait: int = Query(DEFAULT_MAX_WAIT_MINUTES, ge=0, le=24 * 60, description="Minutes"),
    time_weight: float | None = Query(None, ge=0, le=1, description="Overrides the preset split"),
    route_ids: list[str] | None = Query(None, alias="route_id", description="Restrict to routes"),
    service: TransitService = Depends(get_service),
) -> DirectionsResponse:
    """Ranked single-trip boarding options; an empty list means no service."""
    result = await service.directions(
        from_stop_id, to_stop_id,
        priority_mode=priority,
        max_wait_minutes=max_wait,
        time_weight=time_weight,
        route_ids=set(route_ids) if route_ids else None,
    )
    rec = result.recommendation
    return {
        "from_stop": _stop(result.from_stop),
        "to_stop": _stop(result.to_stop),
        "priority_mode": result.priority_mode,
        "options": [_option(o) for o in result.options],
        "recommendation": {
            "recommendation": _option(rec.recommendation) if rec.recommendation else None,
            "alternatives": [_option(o) for o in rec.alternatives],
            "reason": rec.reason,
        },
    }


@app.get("/vehicles", response_model=list[VehicleResult])
async def vehicles(
    route_id: str | None = Query(None),
    service: TransitService = Depends(get_service),
) -> list[VehicleResult]:
    result = []
    for v in await service.vehicles(route_id=route_id):
        row = asdict(v)
        row["occupancy_status"] = row.pop("occupancy").value
        result.append(row)
    return result


@app.get("/alerts", response_model=list[AlertResult])
async def alerts(
    route_id: str | None = Query(None),
    stop_id: str | None = Query(None),
    service: TransitService = Depends(get_service),
) -> list[AlertResult]:
    return [asdict(a) for a in await service.alerts(route_id=route_id, stop_id=stop_id)]


@app.post("/ingest/gtfs-static", response_model=StatusResponse)
async def trigger_gtfs_ingest(
    service: TransitService = Depends(get_service),
    _: None = Depends(_require_ingest_key),
) -> StatusResponse:
    """Drop the cached catalog and reload it now instead of waiting for the TTL."""
    counts = await service.refresh_catalog()
    return {
        "status": "ok",
        "message": (
            f"GTFS static data refreshed: {counts['routes']} routes, "
            f"{counts['stops']} stops, {counts['trips']} trips."
        ),
    }


# ---------------------------------------------------------------------------
# Favorites & preferences
# ---------------------------------------------------------------------------

@app.get("/favorites", response_model=list[FavoriteResult])
async def list_favorites(session: Session = Depends(get_session)) -> list[FavoriteResult]:
    return [queries.favorite_to_dict(f) for f in queries.list_favorites(session)]


@app.post("/favorites", response_model=FavoriteResult, status_code=201)
async def create_favorite(
    body: FavoriteCreate, session: Session = Depends(get_session)
) -> FavoriteResult:
    fav = queries.create_favorite(session, **body.model_dump())
    return queries.favorite_to_dict(fav)


@app.put("/favorites", response_model=FavoriteResult)
async def update_favorite(
    body: FavoriteUpdate, session: Session = Depends(get_session)
) -> FavoriteResult:
    updates = body.model_dump(exclude={"id"}, exclude_none=True)
    fav = queries.update_favorite(session, body.id, **updates)
    if fav is None:
        raise HTTPException(status_code=404, detail=f"Favorite {body.id} not found.")
    return queries.favorite_to_dict(fav)


@app.delete("/favorites", response_model=StatusResponse)
async def delete_favorite(
    favorite_id: int = Query(..., alias="id", ge=1),
    session: Session = Depends(get_session),
) -> StatusResponse:
    if not queries.delete_favorite(session, favorite_id):
        raise HTTPException(status_code=404, detail=f"Favorite {favorite_id} not found.")
    return {"status": "ok", "message": f"Favorite {favorite_id} deleted."}


@app.get("/preferences/{key}", response_model=PreferenceResult)
async def get_preference(key: str, session: Session = Depends(get_session)) -> PreferenceResult:
    value = queries.get_preference(session, key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"Preference '{key}' not set.")
    return {"key": key, "value": value}


@app.put("/preferences/{key}", response_model=PreferenceResult)
async def set_preference(
    key: str, body: PreferenceValue, session: Session = Depends(get_session)
) -> PreferenceResult:
    queries.set_preference(session, key, body.value)
    return {"key": key, "value": body.value}


@app.delete("/preferences/{key}", response_model=StatusResponse)
async def delete_preference(key: str, session: Session = Depends(get_session)) -> StatusResponse:
    if not queries.delete_preference(session, key):
        raise HTTPException(status_code=404, detail=f"Preference '{key}' not set.")
    return {"status": "ok", "message": f"Preference '{key}' deleted."}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)

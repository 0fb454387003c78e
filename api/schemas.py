from __future__ import annotations
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

PriorityMode = Literal["time", "occupancy"]
Occupancy = Literal[
    "EMPTY",
    "MANY_SEATS_AVAILABLE",
    "FEW_SEATS_AVAILABLE",
    "STANDING_ROOM_ONLY",
    "CRUSHED_STANDING_ROOM_ONLY",
    "FULL",
    "NOT_ACCEPTING_PASSENGERS",
    "UNKNOWN",
]


# ---------------------------------------------------------------------------
# GET /routes, /stops, /routes/{id}/shape
# ---------------------------------------------------------------------------

class RouteResult(BaseModel):
    route_id: str
    route_name: str
    route_short_name: str
    route_long_name: str
    route_color: str | None
    route_text_color: str | None


class StopResult(BaseModel):
    stop_id: str
    stop_name: str
    lat: float
    lon: float


class ShapePointResult(BaseModel):
    lat: float
    lon: float
    sequence: int


# ---------------------------------------------------------------------------
# GET /schedule
# ---------------------------------------------------------------------------

class ScheduleEntryResult(BaseModel):
    trip_id: str
    route_id: str
    route_name: str
    headsign: str | None
    scheduled_arrival: str   # HH:MM:SS, may exceed 24:00:00
    estimated_arrival: datetime
    delay: int               # seconds
    is_realtime: bool


class ScheduleResponse(BaseModel):
    stop_id: str
    stop_name: str
    schedule: list[ScheduleEntryResult]


# ---------------------------------------------------------------------------
# GET /directions
# ---------------------------------------------------------------------------

class RankedOptionResult(BaseModel):
    trip_id: str
    route_id: str
    route_name: str
    headsign: str | None
    stop_id: str
    stop_name: str
    estimated_arrival: datetime
    scheduled_arrival: str
    delay: int
    occupancy_status: Occupancy
    occupancy_score: float
    time_score: float
    combined_score: float


class RecommendationResult(BaseModel):
    recommendation: RankedOptionResult | None
    alternatives: list[RankedOptionResult]
    reason: str


class DirectionsResponse(BaseModel):
    from_stop: StopResult = Field(serialization_alias="from")
    to_stop: StopResult = Field(serialization_alias="to")
    priority_mode: PriorityMode
    options: list[RankedOptionResult]
    recommendation: RecommendationResult

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# GET /vehicles, /alerts
# ---------------------------------------------------------------------------

class VehicleResult(BaseModel):
    vehicle_id: str
    trip_id: str
    route_id: str
    route_name: str
    route_color: str | None
    headsign: str | None
    lat: float
    lon: float
    bearing: float | None
    speed: float | None
    current_stop_sequence: int | None
    current_status: str | None
    occupancy_status: Occupancy
    timestamp: int | None


class InformedEntityResult(BaseModel):
    route_id: str | None
    stop_id: str | None
    trip_id: str | None


class AlertResult(BaseModel):
    alert_id: str
    header: str
    description: str
    informed_entities: list[InformedEntityResult]
    start: int | None
    end: int | None


# ---------------------------------------------------------------------------
# /favorites, /preferences
# ---------------------------------------------------------------------------

class FavoriteCreate(BaseModel):
    name: str = Field(..., min_length=1)
    from_stop_id: str = Field(..., min_length=1)
    to_stop_id: str = Field(..., min_length=1)
    preferred_routes: list[str] = Field(default_factory=list)
    priority_mode: PriorityMode = "time"


class FavoriteUpdate(BaseModel):
    id: int
    name: str | None = None
    from_stop_id: str | None = None
    to_stop_id: str | None = None
    preferred_routes: list[str] | None = None
    priority_mode: PriorityMode | None = None


class FavoriteResult(BaseModel):
    id: int
    name: str
    from_stop_id: str
    to_stop_id: str
    preferred_routes: list[str]
    priority_mode: PriorityMode
    created_at: datetime | None
    updated_at: datetime | None


class PreferenceValue(BaseModel):
    value: str


class PreferenceResult(BaseModel):
    key: str
    value: str


# ---------------------------------------------------------------------------
# GET /health, POST /ingest/*
# ---------------------------------------------------------------------------

class CatalogStats(BaseModel):
    loaded: bool
    loading: bool
    expires_at: float | None
    counts: dict[str, int]
    cache: dict[str, int]


class FeedStats(BaseModel):
    vehicle_positions: bool
    trip_updates: bool
    alerts: bool


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    catalog: CatalogStats
    feeds: FeedStats


class StatusResponse(BaseModel):
    status: Literal["ok"]
    message: str

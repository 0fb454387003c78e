"""
Scores and ranks boarding options.  Pure functions, no I/O.

Scores are 0–100 costs (lower = better):
  occupancy_score  fixed ordinal mapping, UNKNOWN → 50 (midpoint)
  time_score       wait seconds normalised over a 30-minute ceiling, clamped
  combined_score   weighted blend selected by priority mode:
                     "time"       0.7 * time + 0.3 * occupancy
                     "occupancy"  0.3 * time + 0.7 * occupancy
                   or an explicit time_weight in [0, 1]

Ranking is ascending combined_score via sorted(), which is stable: equal
scores keep the order in which candidates were discovered.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Literal, Sequence

from ingestion.gtfs_realtime import OccupancyStatus

PriorityMode = Literal["time", "occupancy"]

MAX_WAIT_SECONDS = 30 * 60

OCCUPANCY_SCORES: dict[OccupancyStatus, float] = {
    OccupancyStatus.EMPTY: 0,
    OccupancyStatus.MANY_SEATS_AVAILABLE: 20,
    OccupancyStatus.FEW_SEATS_AVAILABLE: 40,
    OccupancyStatus.STANDING_ROOM_ONLY: 60,
    OccupancyStatus.CRUSHED_STANDING_ROOM_ONLY: 80,
    OccupancyStatus.FULL: 95,
    OccupancyStatus.NOT_ACCEPTING_PASSENGERS: 100,
}
UNKNOWN_OCCUPANCY_SCORE = 50.0

_PRESET_TIME_WEIGHTS: dict[str, float] = {"time": 0.7, "occupancy": 0.3}


@dataclass(frozen=True)
class Candidate:
    """A feasible (trip, boarding stop) pair before scoring."""
    trip_id: str
    route_id: str
    route_name: str
    stop_id: str
    stop_name: str
    estimated_arrival: datetime
    scheduled_arrival: str   # HH:MM:SS as published
    delay: int = 0           # seconds
    occupancy_status: OccupancyStatus = OccupancyStatus.UNKNOWN
    headsign: str | None = None


@dataclass(frozen=True)
class RankedOption(Candidate):
    occupancy_score: float = UNKNOWN_OCCUPANCY_SCORE
    time_score: float = 0.0
    combined_score: float = 0.0


@dataclass(frozen=True)
class Recommendation:
    recommendation: RankedOption | None
    alternatives: list[RankedOption] = field(default_factory=list)
    reason: str = ""


def occupancy_score(status: OccupancyStatus | None) -> float:
    if status is None:
        return UNKNOWN_OCCUPANCY_SCORE
    return float(OCCUPANCY_SCORES.get(status, UNKNOWN_OCCUPANCY_SCORE))


def time_score(wait_seconds: float) -> float:
    """0 for an immediate (or past) departure, 100 at 30 minutes or more."""
    return max(0.0, min(100.0, wait_seconds / MAX_WAIT_SECONDS * 100))


def combined_score(
    time: float,
    occupancy: float,
    mode: PriorityMode = "time",
    time_weight: float | None = None,
) -> float:
    if time_weight is None:
        if mode not in _PRESET_TIME_WEIGHTS:
            raise ValueError(f"Unknown priority mode {mode!r}")
        time_weight = _PRESET_TIME_WEIGHTS[mode]
    else:
        time_weight = max(0.0, min(1.0, time_weight))
    return time * time_weight + occupancy * (1 - time_weight)


def _wait_seconds(option: Candidate, now: datetime) -> float:
    return (option.estimated_arrival - now).total_seconds()


def score(
    candidate: Candidate,
    now: datetime,
    mode: PriorityMode = "time",
    time_weight: float | None = None,
) -> RankedOption:
    occ = occupancy_score(candidate.occupancy_status)
    tim = time_score(_wait_seconds(candidate, now))
    base = {f.name: getattr(candidate, f.name) for f in fields(Candidate)}
    return RankedOption(
        **base,
        occupancy_score=occ,
        time_score=tim,
        combined_score=combined_score(tim, occ, mode, time_weight),
    )


def prioritize(
    candidates: Sequence[Candidate],
    mode: PriorityMode = "time",
    now: datetime | None = None,
    time_weight: float | None = None,
) -> list[RankedOption]:
    """Return a new list of scored options, best (lowest combined score) first."""
    if now is None:
        now = datetime.now().astimezone()
    scored = [score(c, now, mode, time_weight) for c in candidates]
    return sorted(scored, key=lambda o: o.combined_score)


def filter_by_max_wait(
    options: Sequence[RankedOption], max_wait_minutes: float, now: datetime
) -> list[RankedOption]:
    """Keep options departing between now and now + max_wait_minutes."""
    limit = max_wait_minutes * 60
    return [o for o in options if 0 <= _wait_seconds(o, now) <= limit]


def filter_by_max_occupancy(
    options: Sequence[RankedOption], max_occupancy_score: float
) -> list[RankedOption]:
    return [o for o in options if o.occupancy_score <= max_occupancy_score]


def recommend(
    options: Sequence[RankedOption],
    mode: PriorityMode = "time",
    now: datetime | None = None,
) -> Recommendation:
    """Pick the top-ranked option, up to three alternatives, and a one-line reason."""
    if not options:
        return Recommendation(recommendation=None, reason="No routes available at this time.")
    if now is None:
        now = datetime.now().astimezone()

    best = options[0]
    wait_minutes = round(_wait_seconds(best, now) / 60)
    if mode == "occupancy":
        if best.occupancy_status == OccupancyStatus.UNKNOWN:
            level = "moderate occupancy"
        else:
            level = best.occupancy_status.value.replace("_", " ").lower()
        reason = f"Best available capacity ({level}), arrives in {wait_minutes} minutes"
    else:
        reason = f"Arrives in {wait_minutes} minutes"
        if best.occupancy_score < 40:
            reason += " with plenty of space available"
    return Recommendation(recommendation=best, alternatives=list(options[1:4]), reason=reason)

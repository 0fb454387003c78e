"""
Downloads and parses the campus GTFS static feed into a Catalog snapshot.

Feed contents used:
  routes.txt      → Route        (required)
  stops.txt       → Stop         (required)
  trips.txt       → Trip         (required)
  stop_times.txt  → StopTime     (required)
  shapes.txt      → ShapePoint   (optional)

The parsed Catalog is held by StaticCatalogStore behind a SingleFlightCache
entry (key "gtfs_static_all", TTL GTFS_REFRESH_HOURS), so however many
requests arrive while the entry is cold only one download + parse runs.
The parse runs in a worker thread so cache hits keep being served and the
cache's load timeout can cut it off.
Any failure propagates as FetchFailure / ParseFailure and leaves the cache
untouched.
"""

import asyncio
import io
import logging
import zipfile

import httpx
import pandas as pd

from cache.single_flight import SingleFlightCache
from config import GTFS_REFRESH_HOURS, GTFS_STATIC_URL
from errors import FetchFailure, ParseFailure
from ingestion.catalog import Catalog, Route, ShapePoint, Stop, StopTime, Trip

logger = logging.getLogger(__name__)

CATALOG_CACHE_KEY = "gtfs_static_all"
REQUIRED_FILES = ("routes.txt", "stops.txt", "trips.txt", "stop_times.txt")


async def download_gtfs_zip(url: str = GTFS_STATIC_URL, timeout: float = 60) -> bytes:
    """Download the GTFS zip from the given URL."""
    if not url:
        raise FetchFailure("GTFS_STATIC_URL is not configured. Set it in your .env file.")
    logger.info("Downloading GTFS static feed from %s", url)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise FetchFailure(
            f"GTFS static download failed: HTTP {exc.response.status_code} from {url}"
        ) from exc
    except httpx.HTTPError as exc:
        raise FetchFailure(f"GTFS static download failed: {exc}") from exc
    logger.info("Downloaded GTFS zip (%d bytes)", len(response.content))
    return response.content


def parse_catalog(zip_bytes: bytes) -> Catalog:
    """
    Parse a GTFS zip into a Catalog.

    Missing optional columns default to "" (or None on the entity);
    coordinate and sequence fields are coerced to numbers.  A bad archive,
    a missing required file, or a malformed numeric field raises
    ParseFailure; the whole load fails rather than producing a partial
    catalog.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as exc:
        raise ParseFailure(f"GTFS archive is not a readable zip: {exc}") from exc

    with zf:
        names = set(zf.namelist())
        logger.info("GTFS zip contains: %s", sorted(names))
        missing = [f for f in REQUIRED_FILES if f not in names]
        if missing:
            raise ParseFailure(f"GTFS archive is missing required file(s): {', '.join(missing)}")

        def read(filename: str) -> pd.DataFrame:
            try:
                with zf.open(filename) as f:
                    df = pd.read_csv(f, dtype=str, skipinitialspace=True).fillna("")
            except pd.errors.EmptyDataError:
                return pd.DataFrame()
            except (ValueError, UnicodeDecodeError, zipfile.BadZipFile) as exc:
                raise ParseFailure(f"Could not read {filename}: {exc}") from exc
            df.columns = [c.strip().lstrip("\ufeff") for c in df.columns]
            return df

        try:
            catalog = Catalog(
                routes=_parse_routes(read("routes.txt")),
                stops=_parse_stops(read("stops.txt")),
                trips=_parse_trips(read("trips.txt")),
                stop_times=_parse_stop_times(read("stop_times.txt")),
                shapes=_parse_shapes(read("shapes.txt")) if "shapes.txt" in names else [],
            )
        except (KeyError, ValueError) as exc:
            raise ParseFailure(f"Malformed GTFS data: {exc}") from exc

    logger.info(
        "Parsed GTFS catalog: %d routes, %d stops, %d trips, %d stop times, %d shape points.",
        len(catalog.routes), len(catalog.stops), len(catalog.trips),
        len(catalog.stop_times), len(catalog.shapes),
    )
    return catalog


def _opt(row: pd.Series, column: str) -> str | None:
    value = row.get(column, "")
    return value if value else None


def _parse_routes(df: pd.DataFrame) -> list[Route]:
    return [
        Route(
            route_id=row["route_id"],
            short_name=row.get("route_short_name", ""),
            long_name=row.get("route_long_name", ""),
            route_type=row.get("route_type", ""),
            color=_opt(row, "route_color"),
            text_color=_opt(row, "route_text_color"),
        )
        for _, row in df.iterrows()
    ]


def _parse_stops(df: pd.DataFrame) -> list[Stop]:
    return [
        Stop(
            stop_id=row["stop_id"],
            name=row.get("stop_name", ""),
            lat=float(row["stop_lat"]),
            lon=float(row["stop_lon"]),
            code=_opt(row, "stop_code"),
        )
        for _, row in df.iterrows()
    ]


def _parse_trips(df: pd.DataFrame) -> list[Trip]:
    return [
        Trip(
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            service_id=row.get("service_id", ""),
            headsign=_opt(row, "trip_headsign"),
            direction_id=int(row["direction_id"]) if row.get("direction_id") else None,
            shape_id=_opt(row, "shape_id"),
        )
        for _, row in df.iterrows()
    ]


def _parse_stop_times(df: pd.DataFrame) -> list[StopTime]:
    records = []
    for _, row in df.iterrows():
        arrival = row.get("arrival_time", "")
        departure = row.get("departure_time", "")
        records.append(StopTime(
            trip_id=row["trip_id"],
            stop_id=row["stop_id"],
            stop_sequence=int(row["stop_sequence"]),
            # GTFS lets one of the pair be blank on timepoint-less feeds
            arrival_time=arrival or departure,
            departure_time=departure or arrival,
        ))
    return records


def _parse_shapes(df: pd.DataFrame) -> list[ShapePoint]:
    return [
        ShapePoint(
            shape_id=row["shape_id"],
            lat=float(row["shape_pt_lat"]),
            lon=float(row["shape_pt_lon"]),
            sequence=int(row["shape_pt_sequence"]),
        )
        for _, row in df.iterrows()
    ]


class StaticCatalogStore:
    """
    Hands out the current Catalog, loading it through the shared cache.

    Constructed once at startup with the process-wide SingleFlightCache and
    passed to the query layer; it holds no state of its own.
    """

    def __init__(
        self,
        cache: SingleFlightCache,
        url: str = GTFS_STATIC_URL,
        ttl_seconds: float = GTFS_REFRESH_HOURS * 3600,
        download_timeout: float = 60,
    ) -> None:
        self._cache = cache
        self._url = url
        self._ttl = ttl_seconds
        self._download_timeout = download_timeout

    async def get_catalog(self) -> Catalog:
        return await self._cache.get_or_load(CATALOG_CACHE_KEY, self._ttl, self._load)

    async def refresh(self) -> Catalog:
        """Drop the cached catalog and load a fresh one."""
        self._cache.invalidate(CATALOG_CACHE_KEY)
        return await self.get_catalog()

    async def _load(self) -> Catalog:
        zip_bytes = await download_gtfs_zip(self._url, timeout=self._download_timeout)
        return await asyncio.to_thread(parse_catalog, zip_bytes)

    def status(self) -> dict:
        """Freshness of the held catalog without triggering a load."""
        entry = self._cache.peek(CATALOG_CACHE_KEY)
        return {
            "loaded": entry is not None,
            "loading": self._cache.is_loading(CATALOG_CACHE_KEY),
            "expires_at": entry.expires_at if entry else None,
            "counts": entry.value.counts() if entry else {},
            "cache": self._cache.stats(),
        }

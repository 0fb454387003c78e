from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database (favorites, preferences, optional persistent catalog cache)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/campus_transit.db")

# GTFS Static
GTFS_STATIC_URL: str = os.getenv(
    "GTFS_STATIC_URL", "https://passio3.com/uga/passioTransit/gtfs/google_transit.zip"
)
GTFS_REFRESH_HOURS: int = int(os.getenv("GTFS_REFRESH_HOURS", "24"))
CATALOG_LOAD_TIMEOUT_SECONDS: float = float(os.getenv("CATALOG_LOAD_TIMEOUT_SECONDS", "90"))
# "memory" keeps the parsed catalog in-process only; "sql" also persists it
# to DATABASE_URL so a restart does not re-download the archive.
CATALOG_CACHE_BACKEND: str = os.getenv("CATALOG_CACHE_BACKEND", "memory")

# GTFS-Realtime
_RT_BASE = "https://passio3.com/uga/passioTransit/gtfs/realtime"
GTFS_RT_VEHICLE_POSITIONS_URL: str = os.getenv(
    "GTFS_RT_VEHICLE_POSITIONS_URL", f"{_RT_BASE}/vehiclePositions"
)
GTFS_RT_TRIP_UPDATES_URL: str = os.getenv("GTFS_RT_TRIP_UPDATES_URL", f"{_RT_BASE}/tripUpdates")
GTFS_RT_ALERTS_URL: str = os.getenv("GTFS_RT_ALERTS_URL", f"{_RT_BASE}/serviceAlerts")
GTFS_RT_API_KEY: str = os.getenv("GTFS_RT_API_KEY", "")  # appended as ?key= on each RT request
GTFS_RT_TIMEOUT_SECONDS: float = float(os.getenv("GTFS_RT_TIMEOUT_SECONDS", "15"))

# Service clock: stop_times are local time-of-day in this zone
AGENCY_TIMEZONE: str = os.getenv("AGENCY_TIMEZONE", "America/New_York")

# Query defaults
DEFAULT_MAX_WAIT_MINUTES: int = int(os.getenv("DEFAULT_MAX_WAIT_MINUTES", "30"))
SCHEDULE_HORIZON_HOURS: int = int(os.getenv("SCHEDULE_HORIZON_HOURS", "4"))
SCHEDULE_LIMIT: int = int(os.getenv("SCHEDULE_LIMIT", "20"))

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]
INGEST_API_KEY: str = os.getenv("INGEST_API_KEY", "")

"""
SQLAlchemy ORM models for user data and the persistent catalog cache.

GTFS schedule data itself is not stored here; it lives in memory as an
ingestion.catalog.Catalog.  The gtfs_cache table is only the optional
restart-surviving tier behind the in-process SingleFlightCache.
"""

from sqlalchemy import Column, DateTime, Float, Integer, LargeBinary, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    from_stop_id = Column(String, nullable=False, index=True)
    to_stop_id = Column(String, nullable=False, index=True)
    preferred_routes = Column(Text, nullable=True)  # JSON array of route_ids
    priority_mode = Column(String, nullable=False, default="time")  # "time" | "occupancy"
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class UserPreference(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, unique=True, nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class CacheRecord(Base):
    __tablename__ = "gtfs_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cache_key = Column(String, unique=True, nullable=False, index=True)
    data = Column(LargeBinary, nullable=False)  # pickled value
    expires_at = Column(Float, nullable=False, index=True)  # Unix seconds
    created_at = Column(DateTime, server_default=func.now())

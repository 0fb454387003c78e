"""
Unit tests for db/queries.py against an in-memory SQLite database.

StaticPool keeps every checkout on the same connection, otherwise each new
connection would see an empty in-memory database.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cache.single_flight import CacheEntry
from conftest import make_catalog
from db import queries
from db.models import Base, CacheRecord


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

class TestFavorites:
    def test_create_and_read_back(self, db_session):
        fav = queries.create_favorite(
            db_session, "To class", "LIB", "SCI", preferred_routes=["R2", "R1", "R1"],
        )
        result = queries.favorite_to_dict(queries.get_favorite(db_session, fav.id))
        assert result["name"] == "To class"
        assert result["from_stop_id"] == "LIB"
        assert result["to_stop_id"] == "SCI"
        assert result["preferred_routes"] == ["R1", "R2"]
        assert result["priority_mode"] == "time"
        assert result["created_at"] is not None

    def test_no_preferred_routes(self, db_session):
        fav = queries.create_favorite(db_session, "Home", "SCI", "EV")
        assert queries.favorite_to_dict(fav)["preferred_routes"] == []

    def test_list_newest_first(self, db_session):
        first = queries.create_favorite(db_session, "A", "LIB", "SCI")
        second = queries.create_favorite(db_session, "B", "SCI", "EV")
        assert [f.id for f in queries.list_favorites(db_session)] == [second.id, first.id]

    def test_partial_update(self, db_session):
        fav = queries.create_favorite(db_session, "Gym", "LIB", "TATE")
        updated = queries.update_favorite(
            db_session, fav.id, priority_mode="occupancy", preferred_routes=["R2"], name=None,
        )
        result = queries.favorite_to_dict(updated)
        assert result["name"] == "Gym"
        assert result["priority_mode"] == "occupancy"
        assert result["preferred_routes"] == ["R2"]

    def test_update_ignores_unknown_fields(self, db_session):
        fav = queries.create_favorite(db_session, "Gym", "LIB", "TATE")
        updated = queries.update_favorite(db_session, fav.id, id=999, colour="red")
        assert updated.id == fav.id

    def test_update_missing_returns_none(self, db_session):
        assert queries.update_favorite(db_session, 42, name="x") is None

    def test_delete(self, db_session):
        fav = queries.create_favorite(db_session, "Gym", "LIB", "TATE")
        assert queries.delete_favorite(db_session, fav.id) is True
        assert queries.get_favorite(db_session, fav.id) is None
        assert queries.delete_favorite(db_session, fav.id) is False


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

class TestPreferences:
    def test_missing_is_none(self, db_session):
        assert queries.get_preference(db_session, "default_priority") is None

    def test_set_then_overwrite(self, db_session):
        queries.set_preference(db_session, "default_priority", "time")
        queries.set_preference(db_session, "default_priority", "occupancy")
        assert queries.get_preference(db_session, "default_priority") == "occupancy"

    def test_delete(self, db_session):
        queries.set_preference(db_session, "home_stop", "LIB")
        assert queries.delete_preference(db_session, "home_stop") is True
        assert queries.get_preference(db_session, "home_stop") is None
        assert queries.delete_preference(db_session, "home_stop") is False


# ---------------------------------------------------------------------------
# SqlCacheStore
# ---------------------------------------------------------------------------

class TestSqlCacheStore:
    def test_round_trips_catalog(self, session_factory):
        store = queries.SqlCacheStore(session_factory, clock=lambda: 1000.0)
        store.set(CacheEntry("gtfs_static_all", make_catalog(), expires_at=2000.0))
        entry = store.get("gtfs_static_all")
        assert entry.expires_at == 2000.0
        assert entry.value.stop("LIB").name == "Main Library"
        assert [st.stop_sequence for st in entry.value.stop_times_for_trip("T1")] == [1, 2, 3]

    def test_expired_record_is_a_miss(self, session_factory):
        now = [1000.0]
        store = queries.SqlCacheStore(session_factory, clock=lambda: now[0])
        store.set(CacheEntry("k", "v", expires_at=1500.0))
        now[0] = 1500.0
        assert store.get("k") is None

    def test_set_overwrites(self, session_factory, db_session):
        store = queries.SqlCacheStore(session_factory, clock=lambda: 0.0)
        store.set(CacheEntry("k", "old", expires_at=10.0))
        store.set(CacheEntry("k", "new", expires_at=20.0))
        assert store.get("k").value == "new"
        assert db_session.query(CacheRecord).count() == 1

    def test_unreadable_record_is_a_miss(self, session_factory, db_session):
        db_session.add(CacheRecord(cache_key="k", data=b"not a pickle", expires_at=10.0))
        db_session.commit()
        store = queries.SqlCacheStore(session_factory, clock=lambda: 0.0)
        assert store.get("k") is None

    def test_delete(self, session_factory):
        store = queries.SqlCacheStore(session_factory, clock=lambda: 0.0)
        store.set(CacheEntry("k", "v", expires_at=10.0))
        store.delete("k")
        assert store.get("k") is None

    def test_clear_expired(self, session_factory):
        now = [0.0]
        store = queries.SqlCacheStore(session_factory, clock=lambda: now[0])
        store.set(CacheEntry("old", 1, expires_at=5.0))
        store.set(CacheEntry("fresh", 2, expires_at=50.0))
        now[0] = 10.0
        assert store.clear_expired() == 1
        assert store.get("fresh").value == 2

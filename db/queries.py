"""
Keyed CRUD over the persistence tables.

  favorites         saved origin/destination pairs with preferred routes
  user_preferences  free-form string key/value settings
  gtfs_cache        TTL key/value blobs; SqlCacheStore plugs into
                    cache.single_flight.SingleFlightCache as its
                    persistent tier
"""

import json
import logging
import pickle
import time
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from cache.single_flight import CacheEntry
from db.models import CacheRecord, Favorite, UserPreference
from db.session import SessionLocal, session_scope

logger = logging.getLogger(__name__)

_FAVORITE_FIELDS = ("name", "from_stop_id", "to_stop_id", "preferred_routes", "priority_mode")


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

def favorite_to_dict(fav: Favorite) -> dict[str, Any]:
    return {
        "id": fav.id,
        "name": fav.name,
        "from_stop_id": fav.from_stop_id,
        "to_stop_id": fav.to_stop_id,
        "preferred_routes": sorted(json.loads(fav.preferred_routes)) if fav.preferred_routes else [],
        "priority_mode": fav.priority_mode,
        "created_at": fav.created_at,
        "updated_at": fav.updated_at,
    }


def _encode_routes(routes: Any) -> str:
    return json.dumps(sorted(set(routes or [])))


def list_favorites(session: Session) -> list[Favorite]:
    return session.query(Favorite).order_by(Favorite.created_at.desc(), Favorite.id.desc()).all()


def get_favorite(session: Session, favorite_id: int) -> Favorite | None:
    return session.get(Favorite, favorite_id)


def create_favorite(
    session: Session,
    name: str,
    from_stop_id: str,
    to_stop_id: str,
    preferred_routes: Any = None,
    priority_mode: str = "time",
) -> Favorite:
    fav = Favorite(
        name=name,
        from_stop_id=from_stop_id,
        to_stop_id=to_stop_id,
        preferred_routes=_encode_routes(preferred_routes),
        priority_mode=priority_mode,
    )
    session.add(fav)
    session.commit()
    session.refresh(fav)
    logger.info("Created favorite %d (%s → %s).", fav.id, from_stop_id, to_stop_id)
    return fav


def update_favorite(session: Session, favorite_id: int, **updates: Any) -> Favorite | None:
    """Apply a partial update; keys outside the favorite's fields are ignored."""
    fav = session.get(Favorite, favorite_id)
    if fav is None:
        return None
    for key in _FAVORITE_FIELDS:
        if key not in updates or updates[key] is None:
            continue
        value = updates[key]
        setattr(fav, key, _encode_routes(value) if key == "preferred_routes" else value)
    session.commit()
    session.refresh(fav)
    return fav


def delete_favorite(session: Session, favorite_id: int) -> bool:
    fav = session.get(Favorite, favorite_id)
    if fav is None:
        return False
    session.delete(fav)
    session.commit()
    return True


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

def get_preference(session: Session, key: str) -> str | None:
    pref = session.query(UserPreference).filter(UserPreference.key == key).one_or_none()
    return pref.value if pref else None


def set_preference(session: Session, key: str, value: str) -> None:
    pref = session.query(UserPreference).filter(UserPreference.key == key).one_or_none()
    if pref is None:
        session.add(UserPreference(key=key, value=value))
    else:
        pref.value = value
    session.commit()


def delete_preference(session: Session, key: str) -> bool:
    deleted = session.query(UserPreference).filter(UserPreference.key == key).delete()
    session.commit()
    return bool(deleted)


# ---------------------------------------------------------------------------
# Persistent cache tier
# ---------------------------------------------------------------------------

class SqlCacheStore:
    """
    gtfs_cache-backed CacheStore.

    Values are pickled; only this process writes them, from data it parsed
    itself.  expires_at is compared against the same clock the in-memory
    cache uses (Unix seconds by default).
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key: str) -> CacheEntry | None:
        with session_scope(self._session_factory) as session:
            record = (
                session.query(CacheRecord)
                .filter(CacheRecord.cache_key == key, CacheRecord.expires_at > self._clock())
                .one_or_none()
            )
            if record is None:
                return None
            try:
                value = pickle.loads(record.data)
            except (pickle.UnpicklingError, AttributeError, ImportError, EOFError) as exc:
                logger.warning("Discarding unreadable cache record %r: %s", key, exc)
                return None
            return CacheEntry(key=key, value=value, expires_at=record.expires_at)

    def set(self, entry: CacheEntry) -> None:
        data = pickle.dumps(entry.value, protocol=pickle.HIGHEST_PROTOCOL)
        with session_scope(self._session_factory) as session:
            record = (
                session.query(CacheRecord)
                .filter(CacheRecord.cache_key == entry.key)
                .one_or_none()
            )
            if record is None:
                session.add(CacheRecord(cache_key=entry.key, data=data, expires_at=entry.expires_at))
            else:
                record.data = data
                record.expires_at = entry.expires_at
        logger.info("Persisted cache %r (%d bytes).", entry.key, len(data))

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            session.query(CacheRecord).filter(CacheRecord.cache_key == key).delete()

    def clear_expired(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.query(CacheRecord).filter(CacheRecord.expires_at <= self._clock()).delete()

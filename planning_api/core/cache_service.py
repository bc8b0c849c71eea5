import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

import databases

from .constants import CACHE_MAX_AGE_HOURS
from .errors import CacheUnavailable
from ..models.db_models import UserEvents
from ..models.models import CacheRecord, NormalizedEvent

log = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_fresh(last_updated_at: Optional[datetime], max_age_hours: float = CACHE_MAX_AGE_HOURS,
             now: Optional[datetime] = None) -> bool:
    """
    True iff the record is strictly younger than `max_age_hours`.

    Args:
        last_updated_at: When the cached events were written.
        max_age_hours: Freshness threshold in hours.
        now: Reference time (defaults to the current UTC time).
    """
    if last_updated_at is None:
        return False
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - _as_utc(last_updated_at) < timedelta(hours=max_age_hours)


class CacheStore(Protocol):
    async def get(self, owner_identity: str) -> Optional[CacheRecord]:
        ...

    async def save(self, owner_identity: str, events: List[NormalizedEvent]) -> None:
        ...


class DatabaseCacheStore:
    """
    Cache store over the `user_events` table, one row per owner identity.

    Any database error is raised as CacheUnavailable.
    """

    def __init__(self, db: databases.Database):
        self.db = db

    async def get(self, owner_identity: str) -> Optional[CacheRecord]:
        table = UserEvents.__table__
        query = table.select().where(table.c.username == owner_identity)
        try:
            row = await self.db.fetch_one(query)
        except Exception as e:
            raise CacheUnavailable(f"Error reading cached events for {owner_identity}: {e}") from e

        if row is None:
            return None

        last_updated = row["last_updated"]
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        events = [NormalizedEvent.model_validate(item) for item in json.loads(row["events_json"])]
        return CacheRecord(
            owner_identity=owner_identity,
            events=events,
            last_updated_at=_as_utc(last_updated),
        )

    async def save(self, owner_identity: str, events: List[NormalizedEvent]) -> None:
        """Upserts the owner's events with last_updated = now (UTC)."""
        table = UserEvents.__table__
        events_json = json.dumps([e.model_dump(mode="json", by_alias=True) for e in events], ensure_ascii=False)
        now_utc = datetime.now(timezone.utc).replace(tzinfo=None)
        try:
            async with self.db.transaction():
                # Delete existing row and insert the new one (portable upsert)
                await self.db.execute(table.delete().where(table.c.username == owner_identity))
                await self.db.execute(table.insert().values(
                    username=owner_identity,
                    events_json=events_json,
                    last_updated=now_utc,
                ))
        except Exception as e:
            raise CacheUnavailable(f"Error saving events for {owner_identity}: {e}") from e
        log.info(f"Saved {len(events)} events for {owner_identity}")


class CacheGate:
    """
    Freshness-gated access to a cache store. Store failures are soft: reads
    behave as a miss and writes are only logged.
    A gate without a store (caching disabled) always misses.
    """

    def __init__(self, store: Optional[CacheStore], max_age_hours: float = CACHE_MAX_AGE_HOURS):
        self.store = store
        self.max_age_hours = max_age_hours

    @property
    def enabled(self) -> bool:
        return self.store is not None

    def is_fresh(self, last_updated_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        return is_fresh(last_updated_at, self.max_age_hours, now=now)

    async def fetch(self, owner_identity: str) -> Optional[CacheRecord]:
        if self.store is None:
            return None
        try:
            return await self.store.get(owner_identity)
        except Exception as e:
            log.warning(f"Cache check failed for {owner_identity}, treating as absent: {e}")
            return None

    async def fetch_fresh(self, owner_identity: str) -> Optional[CacheRecord]:
        """The cached record if it exists and is fresh, else None."""
        record = await self.fetch(owner_identity)
        if record is not None and self.is_fresh(record.last_updated_at):
            return record
        return None

    async def persist(self, owner_identity: str, events: List[NormalizedEvent]) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(owner_identity, events)
        except Exception as e:
            log.error(f"Failed to cache events for {owner_identity}: {e}", exc_info=True)

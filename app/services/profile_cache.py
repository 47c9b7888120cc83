"""
Profile cache store — ProfileRecord rows keyed by (username, owner_type).

Writes are idempotent upserts: the first successful resolution inserts, every
later one updates in place. Incoming non-null fields win; null never erases a
known value. Concurrent writers converge on the unique key.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.config import STALENESS_DAYS
from app.database import get_session
from app.models.profile_record import ProfileRecord
from app.pipeline.base import (
    CachedProfile, OwnerScope, ProfileSnapshot, ProfileSource,
    normalize_username, utcnow, as_naive_utc,
)

logger = logging.getLogger('services.profile_cache')

# IN (...) lists are chunked to stay under driver parameter limits.
_IN_CHUNK = 500

# ProfileSnapshot field → ProfileRecord column
_SNAPSHOT_COLUMNS = {
    'full_name': 'full_name',
    'bio': 'bio',
    'followers': 'followers',
    'following': 'following',
    'posts_count': 'posts_count',
    'external_url': 'external_url',
    'profile_pic_url': 'profile_pic_original_url',
    'is_verified': 'is_verified',
    'is_private': 'is_private',
    'engagement_rate': 'engagement_rate',
    'top_hashtags': 'top_hashtags',
    'top_posts': 'top_posts',
}


class StalenessPolicy:
    """Max cache age in days per subject kind (creator / company / external)."""

    def __init__(self, days_by_kind: Optional[Dict[str, int]] = None, default_days: int = 7):
        self.days_by_kind = dict(STALENESS_DAYS if days_by_kind is None else days_by_kind)
        self.default_days = default_days

    def max_age_days(self, kind: str) -> int:
        return self.days_by_kind.get(kind, self.default_days)


def is_older_than(timestamp: Optional[datetime], max_age_days: float,
                  now: Optional[datetime] = None) -> bool:
    """True when timestamp is missing or at least max_age_days in the past."""
    timestamp = as_naive_utc(timestamp)
    if timestamp is None:
        return True
    now = as_naive_utc(now) or utcnow()
    return now - timestamp >= timedelta(days=max_age_days)


def is_stale(record, max_age_days: float, now: Optional[datetime] = None) -> bool:
    """record is None, never fetched, or at least max_age_days old (boundary is stale)."""
    if record is None:
        return True
    return is_older_than(getattr(record, 'last_fetched_at', None), max_age_days, now)


def _chunks(items: List[str], size: int = _IN_CHUNK):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class ProfileCacheStore:
    """SQLAlchemy-backed cache of resolved profiles."""

    def __init__(self, session_factory: Optional[Callable] = None):
        self._session_factory = session_factory or get_session

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, username: str, scope: OwnerScope) -> Optional[CachedProfile]:
        name = normalize_username(username)
        session = self._session_factory()
        try:
            row = session.query(ProfileRecord).filter_by(username=name, owner_type=scope.kind).first()
            return CachedProfile.from_row(row) if row else None
        finally:
            session.close()

    def get_many(self, usernames: Iterable[str], scope: OwnerScope) -> Dict[str, CachedProfile]:
        names = sorted({normalize_username(u) for u in usernames if normalize_username(u)})
        found = {}
        session = self._session_factory()
        try:
            for chunk in _chunks(names):
                rows = (
                    session.query(ProfileRecord)
                    .filter(ProfileRecord.owner_type == scope.kind, ProfileRecord.username.in_(chunk))
                    .all()
                )
                for row in rows:
                    found[row.username] = CachedProfile.from_row(row)
            return found
        finally:
            session.close()

    def find_any(self, username: str) -> Optional[CachedProfile]:
        """Most recently fetched row for a username in any scope."""
        name = normalize_username(username)
        session = self._session_factory()
        try:
            row = (
                session.query(ProfileRecord)
                .filter_by(username=name)
                .order_by(ProfileRecord.last_fetched_at.desc())
                .first()
            )
            return CachedProfile.from_row(row) if row else None
        finally:
            session.close()

    def list_stale_subset(self, usernames: Iterable[str], max_age_days: float,
                          owner_type: Optional[str] = None,
                          now: Optional[datetime] = None) -> Set[str]:
        """
        Return the usernames that are absent or past the cutoff.

        One range query per chunk on last_fetched_at; owner_type=None accepts
        a fresh row in any scope.
        """
        names = sorted({normalize_username(u) for u in usernames if normalize_username(u)})
        if not names:
            return set()
        now = as_naive_utc(now) or utcnow()
        cutoff = now - timedelta(days=max_age_days)

        fresh = set()
        session = self._session_factory()
        try:
            for chunk in _chunks(names):
                query = session.query(ProfileRecord.username).filter(
                    ProfileRecord.username.in_(chunk),
                    ProfileRecord.last_fetched_at > cutoff,
                )
                if owner_type is not None:
                    query = query.filter(ProfileRecord.owner_type == owner_type)
                fresh.update(u for (u,) in query.all())
        finally:
            session.close()

        return set(names) - fresh

    def list_missing_pictures(self, usernames: Iterable[str], owner_type: str) -> Set[str]:
        """Usernames whose row has a known picture URL but no stored copy."""
        names = sorted({normalize_username(u) for u in usernames if normalize_username(u)})
        missing = set()
        session = self._session_factory()
        try:
            for chunk in _chunks(names):
                query = session.query(ProfileRecord.username).filter(
                    ProfileRecord.username.in_(chunk),
                    ProfileRecord.owner_type == owner_type,
                    ProfileRecord.profile_pic_storage_path.is_(None),
                    ProfileRecord.profile_pic_original_url.isnot(None),
                )
                missing.update(u for (u,) in query.all())
        finally:
            session.close()
        return missing

    def stats(self, owner_type: Optional[str] = None) -> Dict:
        """
        Enrichment coverage by provenance: row counts per source and owner
        type, and how many rows carry follower data and a stored picture.
        """
        session = self._session_factory()
        try:
            base = session.query(ProfileRecord)
            if owner_type is not None:
                base = base.filter(ProfileRecord.owner_type == owner_type)

            total = base.count()
            with_followers = base.filter(ProfileRecord.followers.isnot(None)).count()
            with_picture = base.filter(ProfileRecord.profile_pic_storage_path.isnot(None)).count()

            def grouped(column, enriched_only=False):
                query = session.query(column, func.count(ProfileRecord.id))
                if owner_type is not None:
                    query = query.filter(ProfileRecord.owner_type == owner_type)
                if enriched_only:
                    query = query.filter(ProfileRecord.followers.isnot(None))
                return {key: count for key, count in query.group_by(column).all()}

            return {
                'total': total,
                'with_followers': with_followers,
                'without_followers': total - with_followers,
                'with_picture': with_picture,
                'without_picture': total - with_picture,
                'by_source': grouped(ProfileRecord.source),
                'enriched_by_source': grouped(ProfileRecord.source, enriched_only=True),
                'by_owner_type': grouped(ProfileRecord.owner_type),
            }
        finally:
            session.close()

    # ── Writes ────────────────────────────────────────────────────────

    @staticmethod
    def _apply(row: ProfileRecord, snapshot: Optional[ProfileSnapshot], source,
               storage_path: Optional[str], now: Optional[datetime]):
        if snapshot is not None:
            for attr, column in _SNAPSHOT_COLUMNS.items():
                value = getattr(snapshot, attr)
                if value is None or value == '' or value == []:
                    continue
                setattr(row, column, value)
        if storage_path:
            row.profile_pic_storage_path = storage_path
        if source is not None:
            row.source = source.value if isinstance(source, ProfileSource) else source
        if now is not None:
            row.last_fetched_at = now

    def _upsert_once(self, name, scope, snapshot, source, storage_path, now, on_write):
        session = self._session_factory()
        try:
            row = session.query(ProfileRecord).filter_by(username=name, owner_type=scope.kind).first()
            if row is None:
                row = ProfileRecord(
                    username=name,
                    owner_type=scope.kind,
                    owner_id=scope.owner_id,
                    is_verified=False,
                    is_private=False,
                    last_fetched_at=now or utcnow(),
                )
                session.add(row)
            elif scope.owner_id is not None:
                row.owner_id = scope.owner_id

            self._apply(row, snapshot, source, storage_path, now)
            session.flush()

            if on_write is not None:
                on_write(session, row)

            session.commit()
            return CachedProfile.from_row(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def upsert(self, username: str, scope: OwnerScope, snapshot: Optional[ProfileSnapshot],
               source, storage_path: Optional[str] = None,
               on_write: Optional[Callable] = None,
               now: Optional[datetime] = None, touch: bool = True) -> CachedProfile:
        """
        Insert or update the row for (username, scope.kind).

        on_write(session, row) runs inside the same transaction, so anything it
        changes (e.g. the subject's application view) commits with the row.
        touch=False keeps last_fetched_at (image-only repairs are not a fetch).
        """
        name = normalize_username(username)
        if not name:
            raise ValueError("username is empty after normalization")
        now = (as_naive_utc(now) or utcnow()) if touch else None
        try:
            return self._upsert_once(name, scope, snapshot, source, storage_path, now, on_write)
        except IntegrityError:
            # Lost an insert race on the unique key; the row exists now.
            logger.info("Upsert race on %s:%s, retrying as update", scope.kind, name)
            return self._upsert_once(name, scope, snapshot, source, storage_path, now, on_write)

    def clear_image(self, username: str, scope: Optional[OwnerScope] = None) -> int:
        """Forget the stored picture so the next resolution fetches a new one."""
        name = normalize_username(username)
        session = self._session_factory()
        try:
            query = session.query(ProfileRecord).filter_by(username=name)
            if scope is not None:
                query = query.filter_by(owner_type=scope.kind)
            count = 0
            for row in query.all():
                row.profile_pic_storage_path = None
                count += 1
            session.commit()
            return count
        except Exception:
            session.rollback()
            logger.error("Failed to clear image for %s", name, exc_info=True)
            return 0
        finally:
            session.close()

"""
Subject store — creators and companies, the application view of a profile.

Writes here always happen inside the cache store's transaction (see
ProfileCacheStore.upsert on_write) so the subject and its ProfileRecord change
together.
"""
import logging
from typing import Callable, Dict, List, Optional

from app.database import get_session
from app.models.subject import Creator, Company, ConnectedAccount, CommunityMembership
from app.pipeline.base import (
    SubjectRef, ProfileSnapshot, CREATOR, COMPANY,
    normalize_username, utcnow, as_naive_utc,
)

logger = logging.getLogger('services.subjects')

_MODELS = {CREATOR: Creator, COMPANY: Company}


def calculate_enrichment_score(subject) -> int:
    """
    Completeness across platforms the subject has a handle for, 0-100.

    instagram: 40 (20 base, +10 followers, +5 bio, +5 top posts)
    tiktok:    30 (15 base, +10 followers, +5 bio)
    youtube:   30 (15 base, +10 subscribers, +5 description)
    """
    score = 0
    max_score = 0

    if subject.instagram:
        max_score += 40
        score += 20
        if (subject.instagram_followers or 0) > 0:
            score += 10
        if subject.instagram_bio:
            score += 5
        if subject.instagram_top_posts:
            score += 5

    if subject.tiktok:
        max_score += 30
        score += 15
        if (subject.tiktok_followers or 0) > 0:
            score += 10
        if subject.tiktok_bio:
            score += 5

    if subject.youtube:
        max_score += 30
        score += 15
        if (subject.youtube_subscribers or 0) > 0:
            score += 10
        if subject.youtube_description:
            score += 5

    if max_score == 0:
        return 0
    return round(score / max_score * 100)


class SubjectStore:
    """Reads and writes creator/company rows on behalf of the pipeline."""

    def __init__(self, session_factory: Optional[Callable] = None):
        self._session_factory = session_factory or get_session

    @staticmethod
    def load(session, ref: SubjectRef):
        model = _MODELS.get(ref.kind)
        if model is None:
            return None
        return session.get(model, ref.id)

    # ── Owned data ────────────────────────────────────────────────────

    def owned_profile(self, ref: SubjectRef, reuse_avatar: bool = False) -> Optional[Dict]:
        """
        What the subject's own row already knows: picture URL, followers and
        when it was last updated. The uploaded avatar is only returned when
        reuse_avatar is set.
        """
        session = self._session_factory()
        try:
            subject = self.load(session, ref)
            if subject is None:
                return None
            return {
                'profile_pic': subject.instagram_profile_pic,
                'avatar': subject.avatar if reuse_avatar else None,
                'followers': subject.instagram_followers,
                'last_updated': as_naive_utc(subject.instagram_last_updated),
                'handle': normalize_username(subject.instagram),
            }
        finally:
            session.close()

    # ── Application view writes ───────────────────────────────────────

    def apply_profile(self, session, ref: SubjectRef, record, public_url: Optional[str]) -> bool:
        """Copy cache-row fields onto the subject (non-null only) and rescore."""
        subject = self.load(session, ref)
        if subject is None:
            logger.warning("Subject %s:%s not found — application view not updated", ref.kind, ref.id)
            return False

        updates = {
            'instagram_followers': record.followers,
            'instagram_following': record.following,
            'instagram_posts': record.posts_count,
            'instagram_bio': record.bio,
            'instagram_verified': record.is_verified,
            'instagram_profile_pic': public_url,
            'instagram_top_posts': record.top_posts or None,
        }
        for column, value in updates.items():
            if value is not None and value != '':
                setattr(subject, column, value)
        subject.instagram_last_updated = utcnow()
        subject.enrichment_score = calculate_enrichment_score(subject)
        return True

    def apply_secondary(self, ref: SubjectRef, platform: str, snapshot: ProfileSnapshot) -> Optional[int]:
        """Store a TikTok/YouTube snapshot on the subject; returns the new score."""
        session = self._session_factory()
        try:
            subject = self.load(session, ref)
            if subject is None:
                return None
            now = utcnow()
            if platform == 'tiktok':
                if snapshot.followers is not None:
                    subject.tiktok_followers = snapshot.followers
                if snapshot.bio:
                    subject.tiktok_bio = snapshot.bio
                subject.tiktok_last_updated = now
            elif platform == 'youtube':
                if snapshot.followers is not None:
                    subject.youtube_subscribers = snapshot.followers
                if snapshot.bio:
                    subject.youtube_description = snapshot.bio
                subject.youtube_last_updated = now
            else:
                raise ValueError(f"Unsupported secondary platform '{platform}'")
            subject.enrichment_score = calculate_enrichment_score(subject)
            score = subject.enrichment_score
            session.commit()
            return score
        except ValueError:
            session.rollback()
            raise
        except Exception:
            session.rollback()
            logger.error("Failed to store %s data for %s:%s", platform, ref.kind, ref.id, exc_info=True)
            return None
        finally:
            session.close()

    def secondary_handles(self, ref: SubjectRef) -> Dict[str, str]:
        session = self._session_factory()
        try:
            subject = self.load(session, ref)
            if subject is None:
                return {}
            handles = {}
            if subject.tiktok:
                handles['tiktok'] = normalize_username(subject.tiktok)
            if subject.youtube:
                handles['youtube'] = normalize_username(subject.youtube)
            return {k: v for k, v in handles.items() if v}
        finally:
            session.close()

    # ── Sync candidates ───────────────────────────────────────────────

    def collect_sync_candidates(self) -> Dict[str, List[SubjectRef]]:
        """
        Every handle that should be kept fresh, mapped to the subjects that own it.

        Sources: active connected accounts, creators with a handle, active
        community members. Handles are de-duplicated case-insensitively.
        """
        candidates: Dict[str, List[SubjectRef]] = {}

        def add(handle, ref=None):
            name = normalize_username(handle)
            if not name:
                return
            refs = candidates.setdefault(name, [])
            if ref is not None and ref not in refs:
                refs.append(ref)

        session = self._session_factory()
        try:
            for account in session.query(ConnectedAccount).filter(ConnectedAccount.is_active.is_(True)):
                if account.company_id:
                    add(account.username, SubjectRef(COMPANY, account.company_id))
                elif account.creator_id:
                    add(account.username, SubjectRef(CREATOR, account.creator_id))
                else:
                    add(account.username)

            for creator in session.query(Creator).filter(Creator.instagram.isnot(None)):
                add(creator.instagram, SubjectRef(CREATOR, creator.id))

            members = session.query(CommunityMembership).filter(CommunityMembership.status == 'active')
            for member in members:
                ref = SubjectRef(CREATOR, member.creator_id) if member.creator_id else None
                add(member.instagram_handle, ref)
        finally:
            session.close()

        logger.info("Collected %d sync candidates", len(candidates))
        return candidates

"""
Tiered resolver — username → profile, walking sources in cost-ascending order.

  CACHE      fresh row with a stored picture (and followers, if data is required)
  OWNED      what we already hold: the subject's own durable picture, or a fresh
             cache row whose picture only needs re-persisting
  DISCOVERY  Graph API business discovery through a connected account (free)
  PAID       single-username paid scraper run

The first tier with data wins; later tiers only fill fields earlier ones left
empty. Every failure inside a tier is routine: log it, move on. Callers always
get a ResolutionOutcome, never an exception.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from app.config import REUSE_UPLOADED_AVATAR
from app.pipeline.base import (
    CachedProfile, OwnerScope, ProfileSnapshot, ProfileSource, ResolutionOutcome, SubjectRef,
    CACHED, REUSED, SUCCESS, NOT_FOUND, ERROR,
    merge_snapshots, normalize_username,
)
from app.pipeline.errors import (
    ConfigurationError, SourceUnavailable, TransientNetworkError,
)
from app.services.circuit_breaker import CircuitOpenError
from app.services.profile_cache import StalenessPolicy, is_stale, is_older_than

logger = logging.getLogger('pipeline.resolver')

TIER_CACHE = 'cache'
TIER_OWNED = 'owned'
TIER_DISCOVERY = 'business_discovery'
TIER_PAID = 'paid_scraper'


class TieredResolver:

    def __init__(self, cache, images, discovery=None, scraper=None, subjects=None,
                 policy: Optional[StalenessPolicy] = None,
                 reuse_avatar: bool = REUSE_UPLOADED_AVATAR,
                 discovery_breaker=None):
        self.cache = cache
        self.images = images
        self.discovery = discovery
        self.scraper = scraper
        self.subjects = subjects
        self.policy = policy or StalenessPolicy()
        self.reuse_avatar = reuse_avatar
        self.discovery_breaker = discovery_breaker
        self.paid_disabled = False
        if scraper is None or not scraper.is_configured:
            self.disable_paid("no paid scraper configured")

    def disable_paid(self, reason):
        """Turn the paid tier off for the lifetime of this resolver."""
        if not self.paid_disabled:
            logger.warning("Paid tier disabled: %s", reason)
        self.paid_disabled = True

    # ── Tier: cache ───────────────────────────────────────────────────

    def is_complete(self, record: Optional[CachedProfile], scope: OwnerScope,
                    require_data: bool = False) -> bool:
        if record is None or is_stale(record, self.policy.max_age_days(scope.kind)):
            return False
        if not record.profile_pic_storage_path:
            return False
        if require_data and record.followers is None:
            return False
        return True

    def check_cache(self, name: str, scope: OwnerScope,
                    require_data: bool = False) -> Tuple[Optional[CachedProfile], bool]:
        """(record, hit): hit means the record can be served without any outbound call."""
        record = self.cache.get(name, scope)
        return record, self.is_complete(record, scope, require_data)

    # ── Tier: owned data ──────────────────────────────────────────────

    async def try_owned(self, name: str, scope: OwnerScope, record: Optional[CachedProfile],
                        require_data: bool = False,
                        subject_refs: Optional[Iterable[SubjectRef]] = None) -> Optional[ResolutionOutcome]:
        max_age = self.policy.max_age_days(scope.kind)
        ref = scope.subject_ref()

        if ref is not None and self.subjects is not None:
            owned = self.subjects.owned_profile(ref, reuse_avatar=self.reuse_avatar)
            if owned and owned['handle'] == name and not is_older_than(owned['last_updated'], max_age):
                picture = owned['profile_pic'] if self.images.is_storage_url(owned['profile_pic']) else None
                picture = picture or owned.get('avatar')
                if picture and (not require_data or owned['followers'] is not None):
                    logger.info("Reusing stored picture for %s:%s (%s)", ref.kind, ref.id, name)
                    return ResolutionOutcome(name, REUSED, record=record, public_url=picture,
                                             source=ProfileSource.OWNED_PLATFORM_API.value)

        # A fresh row that only lacks the durable picture: re-persist for free.
        if (record is not None and not is_stale(record, max_age)
                and not record.profile_pic_storage_path and record.profile_pic_original_url
                and (not require_data or record.followers is not None)):
            path = await self.images.persist(name, record.profile_pic_original_url)
            if path:
                refs = list(subject_refs or [])
                if ref is not None and ref not in refs:
                    refs.append(ref)
                updated = self.cache.upsert(name, scope, None, record.source, storage_path=path,
                                            on_write=self._subject_writer(refs), touch=False)
                logger.info("Re-persisted picture for %s from last known URL", name)
                return ResolutionOutcome(name, REUSED, record=updated,
                                         public_url=self.images.resolve_public_url(path),
                                         source=updated.source)
        return None

    # ── Tier: business discovery ──────────────────────────────────────

    def acting_account(self):
        if self.discovery is None:
            return None
        try:
            return self.discovery.pick_acting_account()
        except Exception as e:
            logger.error("Could not load a connected account for discovery: %s", e)
            return None

    async def try_discovery(self, name: str, account=None) -> Optional[ProfileSnapshot]:
        if self.discovery is None:
            return None
        account = account or self.acting_account()
        if account is None:
            logger.debug("No connected account — skipping discovery for %s", name)
            return None
        if account.username == name:
            logger.debug("Skipping discovery self-lookup for %s", name)
            return None
        try:
            if self.discovery_breaker is not None:
                return await self.discovery_breaker.call_async(self.discovery.lookup_async, account, name)
            return await self.discovery.lookup_async(account, name)
        except CircuitOpenError as e:
            logger.info("Discovery skipped for %s: %s", name, e)
        except SourceUnavailable as e:
            logger.info("Discovery had no data for %s: %s", name, e)
        except TransientNetworkError as e:
            logger.warning("Discovery network error for %s: %s", name, e)
        except Exception as e:
            logger.error("Unexpected discovery error for %s: %s", name, e)
        return None

    # ── Tier: paid scraper ────────────────────────────────────────────

    async def try_paid(self, name: str) -> Optional[ProfileSnapshot]:
        if self.paid_disabled:
            return None
        try:
            results = await self.scraper.scrape_profiles([name])
        except ConfigurationError as e:
            self.disable_paid(e)
            return None
        except CircuitOpenError as e:
            logger.info("Paid tier skipped for %s: %s", name, e)
            return None
        except Exception as e:
            logger.warning("Paid scraper failed for %s: %s", name, e)
            return None
        return results.get(name)

    # ── Write-through ─────────────────────────────────────────────────

    def _subject_writer(self, refs: List[SubjectRef]):
        if not refs or self.subjects is None:
            return None

        def on_write(session, row):
            public_url = self.images.resolve_public_url(row.profile_pic_storage_path)
            for ref in refs:
                self.subjects.apply_profile(session, ref, row, public_url)
        return on_write

    async def write_through(self, name: str, scope: OwnerScope, snapshot: ProfileSnapshot,
                            source: ProfileSource, base: Optional[CachedProfile] = None,
                            subject_refs: Optional[Iterable[SubjectRef]] = None) -> ResolutionOutcome:
        """Merge over the cached row, persist the picture, upsert cache + subjects together."""
        merged = merge_snapshots(base.to_snapshot() if base else None, snapshot)

        storage_path = None
        if merged.profile_pic_url:
            storage_path = await self.images.persist(name, merged.profile_pic_url)

        refs = list(subject_refs or [])
        ref = scope.subject_ref()
        if ref is not None and ref not in refs:
            refs.append(ref)

        try:
            record = self.cache.upsert(name, scope, merged, source, storage_path=storage_path,
                                       on_write=self._subject_writer(refs))
        except Exception as e:
            logger.error("Failed to write %s for %s: %s", source.value, name, e, exc_info=True)
            return ResolutionOutcome(name, ERROR, source=source.value, error=str(e))

        logger.info("Resolved %s via %s (followers=%s, picture=%s)",
                    name, source.value, record.followers, bool(record.profile_pic_storage_path),
                    extra={'username': name, 'tier': source.value})
        return ResolutionOutcome(
            name, SUCCESS, record=record,
            public_url=self.images.resolve_public_url(record.profile_pic_storage_path),
            source=source.value,
        )

    # ── Public API ────────────────────────────────────────────────────

    async def resolve(self, username: str, scope: Optional[OwnerScope] = None,
                      require_data: bool = False, force: bool = False) -> ResolutionOutcome:
        """Resolve one username. Never raises; check outcome.status."""
        name = normalize_username(username)
        scope = scope or OwnerScope.external()
        if not name:
            return ResolutionOutcome(username or '', ERROR, error='empty username')
        try:
            return await self._resolve(name, scope, require_data, force)
        except Exception as e:
            logger.error("Resolution of %s failed unexpectedly: %s", name, e, exc_info=True)
            return ResolutionOutcome(name, ERROR, error=str(e))

    async def _resolve(self, name, scope, require_data, force):
        tried = []

        if force:
            record = self.cache.get(name, scope)
        else:
            tried.append(TIER_CACHE)
            record, hit = self.check_cache(name, scope, require_data)
            if hit:
                logger.debug("Cache hit for %s:%s", scope.kind, name)
                return ResolutionOutcome(
                    name, CACHED, record=record,
                    public_url=self.images.resolve_public_url(record.profile_pic_storage_path),
                    source=record.source, tiers_tried=tried,
                )

            tried.append(TIER_OWNED)
            owned = await self.try_owned(name, scope, record, require_data)
            if owned is not None:
                owned.tiers_tried = tried
                return owned

        tried.append(TIER_DISCOVERY)
        discovered = await self.try_discovery(name)
        if discovered is not None and not (require_data and discovered.followers is None):
            outcome = await self.write_through(name, scope, discovered, ProfileSource.BUSINESS_DISCOVERY, base=record)
            outcome.tiers_tried = tried
            return outcome

        tried.append(TIER_PAID)
        paid = await self.try_paid(name)
        if paid is not None:
            outcome = await self.write_through(name, scope, merge_snapshots(discovered, paid),
                                               ProfileSource.PAID_SCRAPER, base=record)
            outcome.tiers_tried = tried
            return outcome

        if discovered is not None:
            outcome = await self.write_through(name, scope, discovered, ProfileSource.BUSINESS_DISCOVERY, base=record)
            outcome.tiers_tried = tried
            return outcome

        logger.info("No tier had data for %s", name, extra={'username': name})
        return ResolutionOutcome(name, NOT_FOUND, tiers_tried=tried)

    async def refresh(self, username: str, scope: Optional[OwnerScope] = None) -> ResolutionOutcome:
        """Drop the stored picture and resolve again, skipping cache and owned data."""
        scope = scope or OwnerScope.external()
        self.cache.clear_image(username, scope)
        return await self.resolve(username, scope=scope, force=True)

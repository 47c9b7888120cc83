"""
Scheduled sync job — keep every known handle's cache row fresh.

Once a day (and on operator request): collect candidate handles, drop the ones
refreshed within the staleness window (unless their picture never reached
storage), push the rest through the batch resolver in fixed-size chunks with a
pause between chunks. A failing chunk is recorded and the run moves on to the
next one.
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from app.config import SYNC_BATCH_SIZE, SYNC_BATCH_DELAY
from app.pipeline.base import OwnerScope, SubjectRef, EXTERNAL, SUCCESS, REUSED, NOT_FOUND, ERROR, utcnow
from app.pipeline.errors import BatchPartialFailure
from app.pipeline.scheduler import RateLimiter
from app.services.profile_cache import StalenessPolicy

logger = logging.getLogger('pipeline.sync')


@dataclass
class SyncStats:
    total_profiles: int = 0
    updated_profiles: int = 0
    skipped_profiles: int = 0
    not_found: int = 0
    failed_profiles: int = 0
    chunks: int = 0
    paid_calls: int = 0
    estimated_cost: float = 0.0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_secs: float = 0.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d['started_at'] = self.started_at.isoformat() if self.started_at else None
        d['finished_at'] = self.finished_at.isoformat() if self.finished_at else None
        return d


def _chunked(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class ScheduledSyncJob:

    def __init__(self, subjects, cache, batch_resolver,
                 policy: Optional[StalenessPolicy] = None,
                 batch_size: int = SYNC_BATCH_SIZE,
                 limiter: Optional[RateLimiter] = None):
        self.subjects = subjects
        self.cache = cache
        self.batch_resolver = batch_resolver
        self.policy = policy or StalenessPolicy()
        self.batch_size = max(1, batch_size)
        self.limiter = limiter or RateLimiter(SYNC_BATCH_DELAY)
        self.is_running = False
        self.last_stats: Optional[SyncStats] = None

    def collect_candidates(self) -> Dict[str, List[SubjectRef]]:
        return self.subjects.collect_sync_candidates()

    async def run(self) -> SyncStats:
        if self.is_running:
            logger.warning("Sync already in progress — skipping this trigger")
            stats = SyncStats(errors=['sync already in progress'])
            return stats

        self.is_running = True
        try:
            return await self._run()
        finally:
            self.is_running = False

    async def _run(self) -> SyncStats:
        stats = SyncStats(started_at=utcnow())
        t0 = time.monotonic()

        try:
            candidates = self.collect_candidates()
        except Exception as e:
            logger.error("Could not collect sync candidates: %s", e, exc_info=True)
            stats.errors.append(f"General error: {e}")
            return self._finish(stats, t0)

        names = list(candidates)
        stats.total_profiles = len(names)
        if not names:
            logger.info("No profiles to sync")
            return self._finish(stats, t0)

        max_age = self.policy.max_age_days(EXTERNAL)
        try:
            stale = self.cache.list_stale_subset(names, max_age, owner_type=EXTERNAL)
            # fresh rows whose picture never made it to storage get another try
            unpersisted = self.cache.list_missing_pictures(
                [n for n in names if n not in stale], owner_type=EXTERNAL)
        except Exception as e:
            logger.error("Staleness check failed: %s", e, exc_info=True)
            stats.errors.append(f"General error: {e}")
            return self._finish(stats, t0)

        to_update = [n for n in names if n in stale or n in unpersisted]
        stats.skipped_profiles = stats.total_profiles - len(to_update)
        logger.info("%d profiles need update, %d skipped (cached)", len(to_update), stats.skipped_profiles)

        if getattr(self.batch_resolver.resolver, 'paid_disabled', False):
            logger.warning("Paid tier is not configured — syncing with free tiers only")

        scope = OwnerScope.external()
        for index, chunk in enumerate(_chunked(to_update, self.batch_size), start=1):
            async with self.limiter:
                logger.info("Processing chunk %d (%d profiles)", index, len(chunk), extra={'batch': index})
                stats.chunks += 1
                try:
                    result = await self.batch_resolver.resolve_batch(
                        chunk, scope=scope,
                        subjects={n: candidates.get(n, []) for n in chunk},
                        raise_on_paid_failure=True,
                    )
                except BatchPartialFailure as e:
                    msg = f"Chunk {index}: {e}"
                    logger.error(msg)
                    stats.errors.append(msg)
                    result = e.result
                except Exception as e:
                    msg = f"Chunk {index}: {e}"
                    logger.error(msg, exc_info=True)
                    stats.errors.append(msg)
                    continue

                if result is not None:
                    self._accumulate(stats, result)

        return self._finish(stats, t0)

    @staticmethod
    def _accumulate(stats: SyncStats, result):
        stats.updated_profiles += result.count(SUCCESS) + result.count(REUSED)
        stats.not_found += result.count(NOT_FOUND)
        stats.failed_profiles += result.count(ERROR)
        stats.paid_calls += result.paid_calls
        stats.estimated_cost = round(stats.estimated_cost + result.cost.total, 4)

    def _finish(self, stats: SyncStats, t0: float) -> SyncStats:
        stats.finished_at = utcnow()
        stats.duration_secs = round(time.monotonic() - t0, 2)
        self.last_stats = stats
        logger.info(
            "Sync completed: %d updated, %d skipped, %d not found, %d errors (est. $%.4f, %.1fs)",
            stats.updated_profiles, stats.skipped_profiles, stats.not_found,
            len(stats.errors), stats.estimated_cost, stats.duration_secs,
            extra={'cost': stats.estimated_cost},
        )
        return stats

    async def run_manual(self) -> SyncStats:
        """Operator-triggered sync; same routine as the daily run."""
        logger.info("Manual sync triggered")
        return await self.run()

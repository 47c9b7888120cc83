"""
Batch resolver — many usernames, at most one paid scraper run.

Tiers are applied to the whole set before advancing:
  1. fresh cache rows short-circuit to `cached`; a fresh row without a
     stored picture is re-persisted from its last known URL (`reused`)
  2. free discovery per username, bounded concurrency
  3. everything still unresolved goes to the paid scraper in ONE call
  4. names missing from the paid response are `not_found`
Every success is written through the image cache and cache store before
returning.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from app.config import DISCOVERY_CONCURRENCY
from app.pipeline.base import (
    OwnerScope, ProfileSource, ResolutionOutcome, SubjectRef,
    CACHED, NOT_FOUND, ERROR,
    normalize_username,
)
from app.pipeline.cost_config import CostEstimate, estimate
from app.pipeline.errors import BatchPartialFailure, ConfigurationError
from app.services.apify import COST_KEYS, INSTAGRAM

logger = logging.getLogger('pipeline.batch')


@dataclass
class BatchResult:
    outcomes: Dict[str, ResolutionOutcome] = field(default_factory=dict)
    paid_calls: int = 0
    paid_usernames: List[str] = field(default_factory=list)
    cost: CostEstimate = field(default_factory=CostEstimate)
    paid_error: Optional[str] = None

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == status)

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for outcome in self.outcomes.values():
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        return counts


class BatchResolver:

    def __init__(self, resolver, concurrency: int = DISCOVERY_CONCURRENCY):
        self.resolver = resolver
        self.concurrency = max(1, concurrency)

    async def resolve_batch(self, usernames: Iterable[str], scope: Optional[OwnerScope] = None,
                            subjects: Optional[Dict[str, List[SubjectRef]]] = None,
                            raise_on_paid_failure: bool = False) -> BatchResult:
        """
        Resolve every username; returns outcomes keyed by normalized username.

        subjects maps usernames to the creators/companies whose application
        view should be updated alongside the cache row. With
        raise_on_paid_failure, a failing paid call raises BatchPartialFailure
        carrying the partial BatchResult.
        """
        scope = scope or OwnerScope.external()
        subjects = subjects or {}
        resolver = self.resolver
        result = BatchResult()

        names: List[str] = []
        for u in usernames:
            n = normalize_username(u)
            if n and n not in names:
                names.append(n)
        if not names:
            return result

        # 1. Freshness partition
        max_age = resolver.policy.max_age_days(scope.kind)
        stale = resolver.cache.list_stale_subset(names, max_age, owner_type=scope.kind)
        fresh = [n for n in names if n not in stale]
        cached_rows = resolver.cache.get_many(fresh, scope) if fresh else {}
        for name in fresh:
            record = cached_rows.get(name)
            result.outcomes[name] = ResolutionOutcome(
                name, CACHED, record=record,
                public_url=resolver.images.resolve_public_url(record.profile_pic_storage_path) if record else None,
                source=record.source if record else None,
            )
        pending = [n for n in names if n in stale]
        base_rows = resolver.cache.get_many(pending, scope) if pending else {}
        logger.info("Batch of %d: %d fresh, %d to resolve", len(names), len(fresh), len(pending))

        semaphore = asyncio.Semaphore(self.concurrency)

        # Fresh rows that lost their stored picture: re-persist from the last known URL
        async def repair(name, record):
            async with semaphore:
                try:
                    return name, await resolver.try_owned(name, scope, record, subject_refs=subjects.get(name))
                except Exception as e:
                    logger.warning("Picture repair for %s failed: %s", name, e)
                    return name, None

        unpersisted = [(n, cached_rows[n]) for n in fresh
                       if n in cached_rows and not cached_rows[n].profile_pic_storage_path]
        if unpersisted:
            for name, outcome in await asyncio.gather(*(repair(n, r) for n, r in unpersisted)):
                if outcome is not None:
                    result.outcomes[name] = outcome
            logger.info("Re-persisted %d of %d pictures missing from fresh rows",
                        sum(1 for n, _ in unpersisted if result.outcomes[n].status != CACHED), len(unpersisted))

        # 2. Free discovery, bounded concurrency
        account = resolver.acting_account() if pending else None
        discovered_count = 0

        async def discover(name):
            async with semaphore:
                snapshot = await resolver.try_discovery(name, account=account)
                if snapshot is None:
                    return name, None
                outcome = await resolver.write_through(
                    name, scope, snapshot, ProfileSource.BUSINESS_DISCOVERY,
                    base=base_rows.get(name), subject_refs=subjects.get(name),
                )
                return name, outcome

        if account is not None and pending:
            for name, outcome in await asyncio.gather(*(discover(n) for n in pending)):
                if outcome is not None:
                    result.outcomes[name] = outcome
                    discovered_count += 1

        remaining = [n for n in pending if n not in result.outcomes]

        # 3. One paid call for everything left
        paid_results = {}
        if remaining and not resolver.paid_disabled:
            result.paid_calls = 1
            result.paid_usernames = list(remaining)
            try:
                paid_results = await resolver.scraper.scrape_profiles(remaining)
            except ConfigurationError as e:
                resolver.disable_paid(e)
                result.paid_calls = 0
                result.paid_usernames = []
            except Exception as e:
                logger.error("Paid batch of %d failed: %s", len(remaining), e)
                result.paid_error = str(e)
                for name in remaining:
                    result.outcomes[name] = ResolutionOutcome(name, ERROR, error=str(e))
        elif remaining:
            logger.info("Paid tier disabled — %d usernames left unresolved", len(remaining))

        # 4. Demux paid results; absent names are not_found
        async def write_paid(name, snapshot):
            async with semaphore:
                return name, await resolver.write_through(
                    name, scope, snapshot, ProfileSource.PAID_SCRAPER,
                    base=base_rows.get(name), subject_refs=subjects.get(name),
                )

        if paid_results:
            writes = [write_paid(n, paid_results[n]) for n in remaining if n in paid_results]
            for name, outcome in await asyncio.gather(*writes):
                result.outcomes[name] = outcome

        for name in remaining:
            if name not in result.outcomes:
                result.outcomes[name] = ResolutionOutcome(name, NOT_FOUND)

        result.cost = estimate([
            ('business_discovery', discovered_count),
            (COST_KEYS[INSTAGRAM], len(result.paid_usernames)),
        ])

        logger.info("Batch done: %s (paid calls=%d, est. $%.4f)",
                    result.summary(), result.paid_calls, result.cost.total,
                    extra={'cost': result.cost.total})

        if result.paid_error and raise_on_paid_failure:
            raise BatchPartialFailure(remaining, result.paid_error, result=result)
        return result

    async def resolve_many(self, usernames: Iterable[str], **kwargs) -> Dict[str, ResolutionOutcome]:
        return (await self.resolve_batch(usernames, **kwargs)).outcomes

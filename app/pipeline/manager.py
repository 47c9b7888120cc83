"""
Pipeline Manager — builds the enrichment object graph once per process.

    cache store ─┐
    image cache ─┼─► TieredResolver ─► BatchResolver ─► ScheduledSyncJob
    discovery  ──┤        │
    paid scraper ┘        └─► EnrichmentQueue

Web requests use get_pipeline(); worker.py builds its own and runs the
scheduler and queue on one event loop.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from app.config import DISCOVERY_CONCURRENCY, QUEUE_ITEM_DELAY, SYNC_BATCH_DELAY, SYNC_BATCH_SIZE
from app.pipeline.batch import BatchResolver
from app.pipeline.queue import EnrichmentQueue
from app.pipeline.resolver import TieredResolver
from app.pipeline.scheduler import RateLimiter
from app.pipeline.secondary import SecondaryPlatformEnricher
from app.pipeline.sync_job import ScheduledSyncJob
from app.services.apify import PaidScraper
from app.services.business_discovery import BusinessDiscoveryClient
from app.services.profile_cache import ProfileCacheStore, StalenessPolicy
from app.services.r2 import ImageCache, build_blob_store
from app.services.subjects import SubjectStore

logger = logging.getLogger('pipeline.manager')


@dataclass
class EnrichmentPipeline:
    cache: ProfileCacheStore
    images: ImageCache
    subjects: SubjectStore
    discovery: BusinessDiscoveryClient
    scraper: PaidScraper
    resolver: TieredResolver
    batch: BatchResolver
    queue: EnrichmentQueue
    sync_job: ScheduledSyncJob
    secondary: SecondaryPlatformEnricher


def build_pipeline(session_factory: Optional[Callable] = None,
                   images: Optional[ImageCache] = None,
                   scraper: Optional[PaidScraper] = None,
                   discovery: Optional[BusinessDiscoveryClient] = None,
                   policy: Optional[StalenessPolicy] = None,
                   use_breakers: bool = True) -> EnrichmentPipeline:
    """Wire every component; any argument left as None gets the production default."""
    discovery_breaker = None
    paid_breaker = None
    if use_breakers:
        from app.services.circuit_breaker import get_breaker
        discovery_breaker = get_breaker('business_discovery')
        paid_breaker = get_breaker('apify')

    policy = policy or StalenessPolicy()
    cache = ProfileCacheStore(session_factory)
    subjects = SubjectStore(session_factory)
    if images is None:
        images = ImageCache(build_blob_store())
    if discovery is None:
        discovery = BusinessDiscoveryClient(session_factory=session_factory)
    if scraper is None:
        scraper = PaidScraper(breaker=paid_breaker)

    resolver = TieredResolver(
        cache, images,
        discovery=discovery,
        scraper=scraper,
        subjects=subjects,
        policy=policy,
        discovery_breaker=discovery_breaker,
    )
    batch = BatchResolver(resolver, concurrency=DISCOVERY_CONCURRENCY)
    secondary = SecondaryPlatformEnricher(scraper, subjects)
    queue = EnrichmentQueue(resolver, limiter=RateLimiter(QUEUE_ITEM_DELAY), secondary=secondary)
    sync_job = ScheduledSyncJob(subjects, cache, batch, policy=policy,
                                batch_size=SYNC_BATCH_SIZE, limiter=RateLimiter(SYNC_BATCH_DELAY))

    logger.info("Pipeline ready (images=%s, paid=%s)",
                'on' if images.enabled else 'off', 'off' if resolver.paid_disabled else 'on')
    return EnrichmentPipeline(
        cache=cache, images=images, subjects=subjects, discovery=discovery, scraper=scraper,
        resolver=resolver, batch=batch, queue=queue, sync_job=sync_job, secondary=secondary,
    )


# ── Lazy per-process instance ─────────────────────────────────────────────────

_pipeline: Optional[EnrichmentPipeline] = None


def get_pipeline() -> EnrichmentPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def set_pipeline(pipeline: Optional[EnrichmentPipeline]):
    """Swap the process-wide pipeline (tests, custom wiring)."""
    global _pipeline
    _pipeline = pipeline

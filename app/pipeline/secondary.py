"""
Secondary platforms — TikTok and YouTube counts for a subject.

One paid call per platform the subject has a handle for; results land on the
subject row and feed its enrichment score.
"""
import logging
from typing import Dict, Iterable, Optional

from app.pipeline.base import SubjectRef
from app.pipeline.errors import ConfigurationError
from app.services.apify import TIKTOK, YOUTUBE

logger = logging.getLogger('pipeline.secondary')

SECONDARY_PLATFORMS = (TIKTOK, YOUTUBE)


class SecondaryPlatformEnricher:

    def __init__(self, scraper, subjects):
        self.scraper = scraper
        self.subjects = subjects

    async def enrich(self, ref: SubjectRef,
                     platforms: Iterable[str] = SECONDARY_PLATFORMS) -> Dict[str, bool]:
        """Returns {platform: updated} for every platform the subject has a handle on."""
        if self.scraper is None or not self.scraper.is_configured:
            logger.debug("Paid scraper not configured — skipping secondary platforms for %s:%s", ref.kind, ref.id)
            return {}

        handles = self.subjects.secondary_handles(ref)
        results: Dict[str, bool] = {}
        for platform in platforms:
            handle = handles.get(platform)
            if not handle:
                continue
            results[platform] = await self._enrich_one(ref, platform, handle)
        return results

    async def _enrich_one(self, ref: SubjectRef, platform: str, handle: str) -> bool:
        try:
            found = await self.scraper.scrape_profiles([handle], platform=platform)
        except ConfigurationError as e:
            logger.warning("Secondary enrichment unavailable: %s", e)
            return False
        except Exception as e:
            logger.warning("%s lookup failed for %s: %s", platform, handle, e)
            return False

        snapshot = found.get(handle)
        if snapshot is None:
            logger.info("No %s data for %s", platform, handle)
            return False

        score: Optional[int] = self.subjects.apply_secondary(ref, platform, snapshot)
        logger.info("Updated %s for %s:%s (score=%s)", platform, ref.kind, ref.id, score)
        return score is not None

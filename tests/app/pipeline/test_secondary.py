"""Tests for app.pipeline.secondary — TikTok/YouTube enrichment of a subject."""
import pytest

from conftest import FakeScraper
from app.models.subject import Creator
from app.pipeline.base import ProfileSnapshot, SubjectRef
from app.pipeline.errors import ConfigurationError
from app.pipeline.secondary import SecondaryPlatformEnricher


@pytest.fixture
def creator(db_session):
    creator = Creator(name='Dq', instagram='dq', tiktok='@DQ', youtube='dqcooks')
    db_session.add(creator)
    db_session.commit()
    return creator


class PlatformScraper(FakeScraper):
    """Answers per platform: {platform: {handle: snapshot}}."""

    def __init__(self, by_platform, **kwargs):
        super().__init__(**kwargs)
        self.by_platform = by_platform

    async def scrape_profiles(self, usernames, platform='instagram'):
        self.calls.append((platform, list(usernames)))
        if self.error is not None:
            raise self.error
        found = self.by_platform.get(platform, {})
        return {u: found[u] for u in usernames if u in found}


class TestEnrich:

    @pytest.mark.asyncio
    async def test_one_call_per_platform(self, creator, subject_store):
        scraper = PlatformScraper({
            'tiktok': {'dq': ProfileSnapshot('dq', followers=9000, bio='dance')},
            'youtube': {'dqcooks': ProfileSnapshot('dqcooks', followers=120, bio='recipes')},
        })
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id))
        assert results == {'tiktok': True, 'youtube': True}
        assert scraper.calls == [('tiktok', ['dq']), ('youtube', ['dqcooks'])]
        assert creator.tiktok_followers == 9000
        assert creator.youtube_subscribers == 120

    @pytest.mark.asyncio
    async def test_missing_result_is_false(self, creator, subject_store):
        scraper = PlatformScraper({'tiktok': {'dq': ProfileSnapshot('dq', followers=1)}})
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id))
        assert results == {'tiktok': True, 'youtube': False}

    @pytest.mark.asyncio
    async def test_profile_url_handles(self, db_session, subject_store):
        creator = Creator(name='Alice', tiktok='https://www.tiktok.com/@alice_tt')
        db_session.add(creator)
        db_session.commit()
        scraper = PlatformScraper({'tiktok': {'alice_tt': ProfileSnapshot('alice_tt', followers=42)}})
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id))
        assert scraper.calls == [('tiktok', ['alice_tt'])]
        assert results == {'tiktok': True}
        assert creator.tiktok_followers == 42

    @pytest.mark.asyncio
    async def test_skips_platforms_without_handle(self, db_session, subject_store):
        creator = Creator(name='Alice', instagram='alice')
        db_session.add(creator)
        db_session.commit()
        scraper = PlatformScraper({})
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id))
        assert results == {}
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_scraper(self, creator, subject_store):
        scraper = PlatformScraper({}, configured=False)
        assert await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id)) == {}
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_no_scraper(self, creator, subject_store):
        assert await SecondaryPlatformEnricher(None, subject_store).enrich(SubjectRef('creator', creator.id)) == {}

    @pytest.mark.asyncio
    async def test_scraper_errors_are_contained(self, creator, subject_store):
        scraper = PlatformScraper({}, error=ConfigurationError('no token'))
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(SubjectRef('creator', creator.id))
        assert results == {'tiktok': False, 'youtube': False}

    @pytest.mark.asyncio
    async def test_platform_filter(self, creator, subject_store):
        scraper = PlatformScraper({'youtube': {'dqcooks': ProfileSnapshot('dqcooks', followers=5)}})
        results = await SecondaryPlatformEnricher(scraper, subject_store).enrich(
            SubjectRef('creator', creator.id), platforms=('youtube',),
        )
        assert results == {'youtube': True}
        assert scraper.calls == [('youtube', ['dqcooks'])]

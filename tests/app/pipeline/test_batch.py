"""Tests for app.pipeline.batch — one paid call per batch, demux and cost lines."""
import pytest

from conftest import FakeDiscovery, FakeScraper, make_snapshot
from app.models.subject import Creator
from app.pipeline.base import OwnerScope, ProfileSource, SubjectRef, CACHED, REUSED, SUCCESS, NOT_FOUND, ERROR
from app.pipeline.batch import BatchResolver
from app.pipeline.errors import BatchPartialFailure, ConfigurationError, TransientNetworkError
from app.pipeline.resolver import TieredResolver

NAMES = [f'user{i:03d}' for i in range(100)]
FRESH = NAMES[:40]
DISCOVERABLE = NAMES[40:70]
PAID = NAMES[70:]


@pytest.fixture
def build(cache_store, images, subject_store, policy):
    def _build(discovery=None, scraper=None):
        resolver = TieredResolver(
            cache_store, images,
            discovery=discovery if discovery is not None else FakeDiscovery(),
            scraper=scraper if scraper is not None else FakeScraper(),
            subjects=subject_store, policy=policy,
        )
        return BatchResolver(resolver, concurrency=5)
    return _build


@pytest.fixture
def seeded(cache_store):
    for name in FRESH:
        cache_store.upsert(name, OwnerScope.external(), make_snapshot(name), ProfileSource.PAID_SCRAPER,
                           storage_path=f'instagram-profiles/{name}.jpg')


class TestResolveBatch:

    @pytest.mark.asyncio
    async def test_tiers_then_single_paid_call(self, build, seeded):
        discovery = FakeDiscovery({n: make_snapshot(n) for n in DISCOVERABLE})
        # five of the paid names don't exist
        scraper = FakeScraper({n: make_snapshot(n) for n in PAID[:25]})
        result = await build(discovery, scraper).resolve_batch(NAMES)

        assert len(scraper.calls) == 1
        assert scraper.calls[0] == ('instagram', PAID)
        assert result.paid_calls == 1
        assert result.paid_usernames == PAID

        assert result.count(CACHED) == 40
        assert result.count(SUCCESS) == 55
        assert result.count(NOT_FOUND) == 5
        assert all(result.outcomes[n].source == ProfileSource.BUSINESS_DISCOVERY.value for n in DISCOVERABLE)
        assert all(result.outcomes[n].status == NOT_FOUND for n in PAID[25:])
        assert set(discovery.lookups) == set(DISCOVERABLE + PAID)

    @pytest.mark.asyncio
    async def test_cost_lines(self, build, seeded):
        discovery = FakeDiscovery({n: make_snapshot(n) for n in DISCOVERABLE})
        scraper = FakeScraper({n: make_snapshot(n) for n in PAID})
        result = await build(discovery, scraper).resolve_batch(NAMES)
        lines = {line.source_key: line for line in result.cost.lines}
        assert lines['business_discovery'].item_count == 30
        assert lines['business_discovery'].cost == 0.0
        assert lines['instagram_api_scraper'].item_count == 30
        assert result.cost.total == pytest.approx(0.069)

    @pytest.mark.asyncio
    async def test_all_fresh_makes_no_calls(self, build, seeded):
        discovery, scraper = FakeDiscovery(), FakeScraper()
        result = await build(discovery, scraper).resolve_batch(FRESH)
        assert result.count(CACHED) == 40
        assert result.paid_calls == 0
        assert discovery.lookups == []
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_fresh_row_without_picture_is_repersisted(self, build, cache_store, images, db_session):
        creator = Creator(name='Bob', instagram='bob')
        db_session.add(creator)
        db_session.commit()
        # fresh row whose picture upload failed earlier
        cache_store.upsert('bob', OwnerScope.external(), make_snapshot('bob'), ProfileSource.PAID_SCRAPER)
        discovery, scraper = FakeDiscovery(), FakeScraper()

        result = await build(discovery, scraper).resolve_batch(
            ['bob'], subjects={'bob': [SubjectRef('creator', creator.id)]},
        )
        outcome = result.outcomes['bob']
        assert outcome.status == REUSED
        assert outcome.public_url == 'https://media.test/instagram-profiles/bob.jpg'
        assert images.downloads == ['https://cdn.example.com/bob.jpg']
        assert cache_store.get('bob', OwnerScope.external()).profile_pic_storage_path == 'instagram-profiles/bob.jpg'
        assert creator.instagram_profile_pic == 'https://media.test/instagram-profiles/bob.jpg'
        assert discovery.lookups == []
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_fresh_row_stays_cached_when_repair_fails(self, build, cache_store, images):
        cache_store.upsert('bob', OwnerScope.external(), make_snapshot('bob'), ProfileSource.PAID_SCRAPER)
        images.broken_urls.add('https://cdn.example.com/bob.jpg')
        scraper = FakeScraper()
        result = await build(scraper=scraper).resolve_batch(['bob'])
        assert result.outcomes['bob'].status == CACHED
        assert result.outcomes['bob'].public_url is None
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_names_normalized_and_deduped(self, build):
        scraper = FakeScraper({'alice': make_snapshot('alice')})
        result = await build(scraper=scraper).resolve_batch(['@Alice', 'alice', '', 'https://instagram.com/ALICE/'])
        assert list(result.outcomes) == ['alice']
        assert scraper.calls == [('instagram', ['alice'])]

    @pytest.mark.asyncio
    async def test_empty_input(self, build):
        result = await build().resolve_batch([])
        assert result.outcomes == {}
        assert result.paid_calls == 0

    @pytest.mark.asyncio
    async def test_writes_subject_views(self, build, db_session):
        creator = Creator(name='Alice', instagram='alice')
        db_session.add(creator)
        db_session.commit()
        scraper = FakeScraper({'alice': make_snapshot('alice', followers=321)})
        await build(scraper=scraper).resolve_batch(
            ['alice'], subjects={'alice': [SubjectRef('creator', creator.id)]},
        )
        assert creator.instagram_followers == 321

    @pytest.mark.asyncio
    async def test_resolve_many_returns_outcomes(self, build):
        scraper = FakeScraper({'alice': make_snapshot('alice')})
        outcomes = await build(scraper=scraper).resolve_many(['alice', 'ghost'])
        assert outcomes['alice'].status == SUCCESS
        assert outcomes['ghost'].status == NOT_FOUND


class TestPaidFailures:

    @pytest.mark.asyncio
    async def test_paid_error_marks_remaining(self, build, seeded):
        scraper = FakeScraper(error=TransientNetworkError('apify', 'timeout'))
        result = await build(scraper=scraper).resolve_batch(FRESH[:5] + PAID[:3])
        assert result.count(CACHED) == 5
        assert result.count(ERROR) == 3
        assert 'timeout' in result.paid_error

    @pytest.mark.asyncio
    async def test_raise_on_paid_failure_carries_partial_result(self, build, seeded):
        scraper = FakeScraper(error=TransientNetworkError('apify', 'timeout'))
        with pytest.raises(BatchPartialFailure) as exc_info:
            await build(scraper=scraper).resolve_batch(FRESH[:5] + PAID[:3], raise_on_paid_failure=True)
        err = exc_info.value
        assert err.usernames == PAID[:3]
        assert err.result.count(CACHED) == 5

    @pytest.mark.asyncio
    async def test_configuration_error_disables_paid(self, build):
        scraper = FakeScraper(error=ConfigurationError('no token'))
        batch = build(scraper=scraper)
        result = await batch.resolve_batch(['alice', 'bob'])
        assert result.count(NOT_FOUND) == 2
        assert result.paid_calls == 0
        assert batch.resolver.paid_disabled is True

    @pytest.mark.asyncio
    async def test_unconfigured_paid_never_called(self, build):
        scraper = FakeScraper({'alice': make_snapshot('alice')}, configured=False)
        result = await build(scraper=scraper).resolve_batch(['alice'])
        assert result.outcomes['alice'].status == NOT_FOUND
        assert scraper.calls == []

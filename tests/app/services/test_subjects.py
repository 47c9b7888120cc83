"""Tests for app.services.subjects — enrichment score, application view, sync candidates."""
import pytest
from types import SimpleNamespace

from app.models.subject import Creator, Company, ConnectedAccount, CommunityMembership
from app.pipeline.base import CachedProfile, ProfileSnapshot, SubjectRef
from app.services.subjects import calculate_enrichment_score

POST = {'id': 'C1', 'url': 'https://www.instagram.com/p/C1/', 'image_url': None, 'caption': 'hi',
        'likes': 10, 'comments': 2, 'timestamp': '2026-10-01T12:00:00+0000'}


def _subject(**fields):
    defaults = dict(
        instagram=None, instagram_followers=None, instagram_bio=None, instagram_top_posts=None,
        tiktok=None, tiktok_followers=None, tiktok_bio=None,
        youtube=None, youtube_subscribers=None, youtube_description=None,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


class TestEnrichmentScore:

    def test_no_handles(self):
        assert calculate_enrichment_score(_subject()) == 0

    def test_instagram_handle_only(self):
        assert calculate_enrichment_score(_subject(instagram='alice')) == 50

    def test_instagram_complete(self):
        subject = _subject(instagram='alice', instagram_followers=10, instagram_bio='hi',
                           instagram_top_posts=[POST])
        assert calculate_enrichment_score(subject) == 100

    def test_instagram_without_posts(self):
        subject = _subject(instagram='alice', instagram_followers=10, instagram_bio='hi', instagram_top_posts=[])
        # 35 / 40
        assert calculate_enrichment_score(subject) == 88

    def test_zero_followers_earns_nothing(self):
        assert calculate_enrichment_score(_subject(instagram='alice', instagram_followers=0)) == 50

    def test_all_platforms_partial(self):
        subject = _subject(
            instagram='alice', instagram_followers=10,              # 30 / 40
            tiktok='alice', tiktok_bio='dance',                     # 20 / 30
            youtube='alice', youtube_subscribers=5,                 # 25 / 30
        )
        assert calculate_enrichment_score(subject) == 75

    def test_tiktok_only_complete(self):
        subject = _subject(tiktok='dq', tiktok_followers=1, tiktok_bio='x')
        assert calculate_enrichment_score(subject) == 100


class TestOwnedProfile:

    def test_missing_subject(self, subject_store):
        assert subject_store.owned_profile(SubjectRef('creator', 404)) is None

    def test_reads_application_view(self, subject_store, db_session):
        creator = Creator(name='Alice', instagram='@Alice', instagram_profile_pic='https://media/a.jpg',
                          instagram_followers=10, avatar='https://uploads/a.png')
        db_session.add(creator)
        db_session.commit()
        owned = subject_store.owned_profile(SubjectRef('creator', creator.id))
        assert owned['handle'] == 'alice'
        assert owned['profile_pic'] == 'https://media/a.jpg'
        assert owned['followers'] == 10
        assert owned['avatar'] is None

    def test_avatar_only_with_reuse(self, subject_store, db_session):
        creator = Creator(name='Alice', instagram='alice', avatar='https://uploads/a.png')
        db_session.add(creator)
        db_session.commit()
        owned = subject_store.owned_profile(SubjectRef('creator', creator.id), reuse_avatar=True)
        assert owned['avatar'] == 'https://uploads/a.png'


class TestApplyProfile:

    def test_copies_non_null_fields_and_rescores(self, subject_store, db_session):
        company = Company(name='Acme', instagram='acme', instagram_bio='old bio')
        db_session.add(company)
        db_session.commit()
        record = CachedProfile('acme', 'company', followers=500, bio=None, following=3, posts_count=9,
                               is_verified=True, top_posts=[POST])
        assert subject_store.apply_profile(db_session, SubjectRef('company', company.id), record,
                                           'https://media/acme.jpg') is True
        assert company.instagram_followers == 500
        assert company.instagram_bio == 'old bio'
        assert company.instagram_profile_pic == 'https://media/acme.jpg'
        assert company.instagram_top_posts == [POST]
        assert company.instagram_last_updated is not None
        assert company.enrichment_score == 100

    def test_missing_subject(self, subject_store, db_session):
        record = CachedProfile('ghost', 'creator', followers=1)
        assert subject_store.apply_profile(db_session, SubjectRef('creator', 999), record, None) is False


class TestSecondary:

    def test_apply_tiktok(self, subject_store, db_session):
        creator = Creator(name='Dq', instagram='dq', tiktok='@dq')
        db_session.add(creator)
        db_session.commit()
        score = subject_store.apply_secondary(SubjectRef('creator', creator.id), 'tiktok',
                                              ProfileSnapshot('dq', followers=900, bio='dance'))
        assert creator.tiktok_followers == 900
        assert creator.tiktok_bio == 'dance'
        assert creator.tiktok_last_updated is not None
        # instagram 20/40 + tiktok 30/30 → 50/70
        assert score == 71

    def test_apply_youtube(self, subject_store, db_session):
        creator = Creator(name='Cook', youtube='cook')
        db_session.add(creator)
        db_session.commit()
        subject_store.apply_secondary(SubjectRef('creator', creator.id), 'youtube',
                                      ProfileSnapshot('cook', followers=10, bio='recipes'))
        assert creator.youtube_subscribers == 10
        assert creator.youtube_description == 'recipes'

    def test_unknown_platform(self, subject_store, db_session):
        creator = Creator(name='X', instagram='x')
        db_session.add(creator)
        db_session.commit()
        with pytest.raises(ValueError):
            subject_store.apply_secondary(SubjectRef('creator', creator.id), 'myspace', ProfileSnapshot('x'))

    def test_secondary_handles(self, subject_store, db_session):
        creator = Creator(name='Dq', instagram='dq', tiktok='@DQ', youtube=None)
        db_session.add(creator)
        db_session.commit()
        assert subject_store.secondary_handles(SubjectRef('creator', creator.id)) == {'tiktok': 'dq'}

    def test_secondary_handles_from_profile_urls(self, subject_store, db_session):
        creator = Creator(name='Alice', tiktok='https://www.tiktok.com/@alice_tt',
                          youtube='https://www.youtube.com/@AliceChannel')
        db_session.add(creator)
        db_session.commit()
        assert subject_store.secondary_handles(SubjectRef('creator', creator.id)) == {
            'tiktok': 'alice_tt', 'youtube': 'alicechannel',
        }

    def test_secondary_handles_skip_bare_urls(self, subject_store, db_session):
        creator = Creator(name='Alice', tiktok='https://www.tiktok.com/')
        db_session.add(creator)
        db_session.commit()
        assert subject_store.secondary_handles(SubjectRef('creator', creator.id)) == {}


class TestCollectSyncCandidates:

    def test_collects_and_dedups(self, subject_store, db_session):
        acme = Company(name='Acme')
        alice = Creator(name='Alice', instagram='@Alice')
        bob = Creator(name='Bob', instagram=None)
        db_session.add_all([acme, alice, bob])
        db_session.flush()
        db_session.add_all([
            ConnectedAccount(company_id=acme.id, username='AcmeBrand', is_active=True),
            ConnectedAccount(company_id=acme.id, username='retired', is_active=False),
            ConnectedAccount(creator_id=alice.id, username='alice', is_active=True),
            CommunityMembership(company_id=acme.id, creator_id=alice.id, instagram_handle='ALICE', status='active'),
            CommunityMembership(company_id=acme.id, creator_id=None, instagram_handle='prospect', status='active'),
            CommunityMembership(company_id=acme.id, creator_id=bob.id, instagram_handle='bob_gone', status='removed'),
        ])
        db_session.commit()

        candidates = subject_store.collect_sync_candidates()
        assert set(candidates) == {'acmebrand', 'alice', 'prospect'}
        assert candidates['acmebrand'] == [SubjectRef('company', acme.id)]
        assert candidates['alice'] == [SubjectRef('creator', alice.id)]
        assert candidates['prospect'] == []

    def test_url_handles_stay_separate(self, subject_store, db_session):
        first = Creator(name='One', instagram='https://m.instagram.com/one/')
        second = Creator(name='Two', instagram='https://www.instagram.com/Two/?hl=en')
        db_session.add_all([first, second])
        db_session.commit()

        candidates = subject_store.collect_sync_candidates()
        assert set(candidates) == {'one', 'two'}
        assert candidates['one'] == [SubjectRef('creator', first.id)]

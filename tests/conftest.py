"""Shared test fixtures."""
import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, load_models
from app.pipeline.base import ProfileSnapshot, normalize_username
from app.pipeline.errors import SourceUnavailable
from app.services.business_discovery import ActingAccount
from app.services.profile_cache import ProfileCacheStore, StalenessPolicy
from app.services.r2 import BlobStore, ImageCache
from app.services.subjects import SubjectStore


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    load_models()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that stores calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('app.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def session_factory(db_session):
    """Factory handed to stores: always the shared test session."""
    return lambda: db_session


# ── Redis ────────────────────────────────────────────────────────────────────

class FakeRedis:
    """Minimal in-memory Redis fake (strings, hashes, lists)."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}
        self.lists = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value):
        self.get_store[key] = value

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)
            self.lists.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def llen(self, key):
        return len(self.lists.get(key, []))

    def blpop(self, keys, timeout=0):
        for key in keys:
            items = self.lists.get(key)
            if items:
                return key, items.pop(0)
        return None

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that executes immediately."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def set(self, key, value):
        self._ops.append(('set', key, value))
        return self

    def delete(self, *keys):
        self._ops.append(('delete', keys))
        return self

    def hincrby(self, key, field, amount):
        self._ops.append(('hincrby', key, field, amount))
        return self

    def hset(self, key, field, value):
        self._ops.append(('hset', key, field, value))
        return self

    def execute(self):
        for op in self._ops:
            if op[0] == 'set':
                self._redis.set(op[1], op[2])
            elif op[0] == 'delete':
                self._redis.delete(*op[1])
            elif op[0] == 'hincrby':
                self._redis.hincrby(op[1], op[2], op[3])
            elif op[0] == 'hset':
                self._redis.hset(op[1], op[2], op[3])
        self._ops = []


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


# ── Pipeline collaborators ───────────────────────────────────────────────────

class FakeBlobStore(BlobStore):
    """Records every put; set `fail` to make puts raise."""

    def __init__(self):
        self.objects = {}
        self.fail = False

    def put(self, bucket, path, data, content_type):
        if self.fail:
            raise IOError('bucket unavailable')
        self.objects[path] = (data, content_type)


class StubImageCache(ImageCache):
    """ImageCache whose download never touches the network."""

    def __init__(self, blob_store, **kwargs):
        kwargs.setdefault('bucket', 'test-bucket')
        kwargs.setdefault('public_base_url', 'https://media.test')
        super().__init__(blob_store, **kwargs)
        self.downloads = []
        self.broken_urls = set()

    def download(self, remote_url):
        self.downloads.append(remote_url)
        if remote_url in self.broken_urls:
            return None
        return b'\xff\xd8' + b'0' * 500, 'image/jpeg'


class FakeDiscovery:
    """Business discovery fake: answers from `profiles`, counts lookups."""

    def __init__(self, profiles=None, account=ActingAccount('brand_owner', '1789', 'token-abc')):
        self.profiles = {normalize_username(k): v for k, v in (profiles or {}).items()}
        self.account = account
        self.lookups = []

    def pick_acting_account(self):
        return self.account

    async def lookup_async(self, account, target):
        self.lookups.append(target)
        snapshot = self.profiles.get(target)
        if snapshot is None:
            raise SourceUnavailable('business_discovery', f'{target} is not a business account')
        return snapshot


class FakeScraper:
    """Paid scraper fake: one entry in `calls` per scrape_profiles() invocation."""

    def __init__(self, profiles=None, configured=True, error=None):
        self.profiles = {normalize_username(k): v for k, v in (profiles or {}).items()}
        self.is_configured = configured
        self.error = error
        self.calls = []

    async def scrape_profiles(self, usernames, platform='instagram'):
        names = [normalize_username(u) for u in usernames]
        self.calls.append((platform, names))
        if self.error is not None:
            raise self.error
        return {n: self.profiles[n] for n in names if n in self.profiles}


def make_snapshot(username, followers=1000, pic=True, **fields):
    """ProfileSnapshot with sensible defaults for tests."""
    fields.setdefault('full_name', username.title())
    fields.setdefault('bio', f'bio of {username}')
    if pic:
        fields.setdefault('profile_pic_url', f'https://cdn.example.com/{username}.jpg')
    return ProfileSnapshot(username=username, followers=followers, **fields)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def images(blob_store):
    return StubImageCache(blob_store)


@pytest.fixture
def cache_store(session_factory):
    return ProfileCacheStore(session_factory)


@pytest.fixture
def subject_store(session_factory):
    return SubjectStore(session_factory)


@pytest.fixture
def policy():
    return StalenessPolicy({'creator': 7, 'external': 7, 'company': 30})


# ── Clock ────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock + sleep pair; sleeping advances time instantly."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


# ── Flask ────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(fake_redis):
    """Flask test app with breakers on the in-memory Redis fake."""
    from app import create_app
    from app.services.circuit_breaker import init_breakers
    app = create_app()
    app.config['TESTING'] = True
    init_breakers(fake_redis)
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c

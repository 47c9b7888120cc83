"""
Apify paid scraper — bulk profile lookups for Instagram, TikTok and YouTube.

One actor run per scrape_profiles() call regardless of how many usernames it
carries. Raw dataset items are wrapped in a per-platform result type and
normalized into ProfileSnapshot by explicit mapping functions, so nothing
downstream sees platform-specific shapes.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from app.config import APIFY_API_TOKEN, APIFY_TIMEOUT_SECS, APIFY_WAIT_SECS
from app.pipeline.base import ProfileSnapshot, normalize_username, post_summary, rank_top_posts
from app.pipeline.cost_config import estimate_one
from app.pipeline.errors import ConfigurationError, TransientNetworkError

logger = logging.getLogger('services.apify')

INSTAGRAM = 'instagram'
TIKTOK = 'tiktok'
YOUTUBE = 'youtube'

ACTORS = {
    INSTAGRAM: 'apify/instagram-api-scraper',
    TIKTOK:    'clockworks/tiktok-scraper',
    YOUTUBE:   'apidojo/youtube-channel-scraper',
}

# Price-table key per platform (see cost_config.yaml)
COST_KEYS = {
    INSTAGRAM: 'instagram_api_scraper',
    TIKTOK:    'tiktok_scraper',
    YOUTUBE:   'youtube_channel',
}


# ── Backend ───────────────────────────────────────────────────────────────────

class ScraperBackend(ABC):
    """Runs one actor and returns its dataset items."""

    @abstractmethod
    def run(self, actor_id: str, run_input: Dict) -> List[Dict]:
        ...


class ApifyBackend(ScraperBackend):
    """ScraperBackend over apify_client.ApifyClient."""

    def __init__(self, token: str, timeout_secs: int = APIFY_TIMEOUT_SECS,
                 wait_secs: int = APIFY_WAIT_SECS):
        from apify_client import ApifyClient
        self.client = ApifyClient(token)
        self.timeout_secs = timeout_secs
        self.wait_secs = wait_secs

    def run(self, actor_id, run_input):
        run = self.client.actor(actor_id).call(
            run_input=run_input, timeout_secs=self.timeout_secs, wait_secs=self.wait_secs,
        )
        if not run:
            raise TransientNetworkError('apify', f"actor {actor_id} returned no run")
        status = run.get('status')
        if status and status != 'SUCCEEDED':
            logger.warning("Actor %s finished with status %s — reading partial dataset", actor_id, status)
        return list(self.client.dataset(run['defaultDatasetId']).iterate_items())


# ── Raw result union ──────────────────────────────────────────────────────────

@dataclass
class RawInstagramResult:
    data: Dict
    platform: str = INSTAGRAM


@dataclass
class RawTikTokResult:
    data: Dict
    platform: str = TIKTOK


@dataclass
class RawYouTubeResult:
    data: Dict
    platform: str = YOUTUBE


RawResult = Union[RawInstagramResult, RawTikTokResult, RawYouTubeResult]

_RAW_TYPES = {
    INSTAGRAM: RawInstagramResult,
    TIKTOK:    RawTikTokResult,
    YOUTUBE:   RawYouTubeResult,
}


def wrap_raw(platform: str, item: Dict) -> RawResult:
    try:
        return _RAW_TYPES[platform](data=item)
    except KeyError:
        raise ValueError(f"Unsupported scraper platform '{platform}'") from None


def _first(*values):
    for v in values:
        if v is not None and v != '':
            return v
    return None


def _nested_count(raw: Dict, key: str) -> Optional[int]:
    value = raw.get(key)
    if isinstance(value, dict):
        return value.get('count')
    return None


def normalize_instagram(result: RawInstagramResult) -> Optional[ProfileSnapshot]:
    raw = result.data
    username = normalize_username(raw.get('username'))
    if not username:
        return None
    return ProfileSnapshot(
        username=username,
        full_name=_first(raw.get('fullName'), raw.get('full_name')),
        bio=_first(raw.get('biography'), raw.get('bio')),
        followers=_first(raw.get('followersCount'), _nested_count(raw, 'edge_followed_by')),
        following=_first(raw.get('followsCount'), _nested_count(raw, 'edge_follow')),
        posts_count=_first(raw.get('postsCount'), _nested_count(raw, 'edge_owner_to_timeline_media')),
        profile_pic_url=_first(raw.get('profilePicUrlHD'), raw.get('profile_pic_url_hd'),
                               raw.get('profilePicUrl'), raw.get('profile_pic_url')),
        is_verified=_first(raw.get('verified'), raw.get('is_verified')),
        is_private=_first(raw.get('private'), raw.get('is_private')),
        external_url=_first(raw.get('externalUrl'), raw.get('external_url')),
        top_posts=_instagram_posts(raw.get('latestPosts') or []) or None,
    )


def _instagram_posts(items: List[Dict]) -> List[Dict]:
    posts = []
    for p in items:
        short_code = _first(p.get('shortCode'), p.get('id'))
        posts.append(post_summary(
            short_code,
            _first(p.get('url'), f'https://www.instagram.com/p/{short_code}/' if short_code else None),
            _first(p.get('caption'), p.get('text')),
            _first(p.get('likesCount'), p.get('likeCount')),
            _first(p.get('commentsCount'), p.get('commentCount')),
            _first(p.get('timestamp'), p.get('takenAtTimestamp')),
            image_url=_first(p.get('displayUrl'), p.get('thumbnailUrl')),
        ))
    return rank_top_posts(posts)


def normalize_tiktok(result: RawTikTokResult) -> Optional[ProfileSnapshot]:
    # Items are videos; the profile lives under the author object.
    raw = result.data
    author = raw.get('author') or raw.get('authorMeta') or raw
    username = normalize_username(_first(author.get('uniqueId'), author.get('name')))
    if not username:
        return None
    return ProfileSnapshot(
        username=username,
        full_name=_first(author.get('nickname'), author.get('nickName')),
        bio=_first(author.get('signature')),
        followers=_first(author.get('followers'), author.get('fans'), author.get('followerCount')),
        following=_first(author.get('following'), author.get('followingCount')),
        posts_count=_first(author.get('videoCount'), author.get('video')),
        profile_pic_url=_first(author.get('avatarLarger'), author.get('avatar')),
        is_verified=author.get('verified'),
        is_private=author.get('privateAccount'),
    )


def normalize_youtube(result: RawYouTubeResult) -> Optional[ProfileSnapshot]:
    raw = result.data
    handle = _first(raw.get('channelUsername'), raw.get('channelHandle'), raw.get('channelId'))
    username = normalize_username(handle)
    if not username:
        return None
    return ProfileSnapshot(
        username=username,
        full_name=_first(raw.get('channelName'), raw.get('title')),
        bio=_first(raw.get('channelDescription'), raw.get('description')),
        followers=_first(raw.get('numberOfSubscribers'), raw.get('subscribersCount'),
                         raw.get('subscriberCount')),
        posts_count=_first(raw.get('channelTotalVideos'), raw.get('videosCount')),
        profile_pic_url=_first(raw.get('channelAvatarUrl'), raw.get('avatarUrl')),
        is_verified=raw.get('isChannelVerified'),
        external_url=raw.get('channelUrl'),
    )


NORMALIZERS: Dict[type, Callable[[RawResult], Optional[ProfileSnapshot]]] = {
    RawInstagramResult: normalize_instagram,
    RawTikTokResult:    normalize_tiktok,
    RawYouTubeResult:   normalize_youtube,
}


def normalize(result: RawResult) -> Optional[ProfileSnapshot]:
    return NORMALIZERS[type(result)](result)


# ── Actor inputs ──────────────────────────────────────────────────────────────

def build_run_input(platform: str, usernames: List[str]) -> Dict:
    if platform == INSTAGRAM:
        return {
            'directUrls': [f'https://www.instagram.com/{u}/' for u in usernames],
            'resultsType': 'details',
            'resultsLimit': len(usernames),
        }
    if platform == TIKTOK:
        return {
            'profiles': [f'https://www.tiktok.com/@{u}' for u in usernames],
            'resultsPerPage': 1,
            'shouldDownloadVideos': False,
        }
    if platform == YOUTUBE:
        return {
            'startUrls': [{'url': f'https://www.youtube.com/@{u}'} for u in usernames],
            'maxResults': 1,
        }
    raise ValueError(f"Unsupported scraper platform '{platform}'")


# ── Paid scraper ──────────────────────────────────────────────────────────────

class PaidScraper:
    """
    Bulk profile scraper. Usage:

        scraper = PaidScraper()
        profiles = await scraper.scrape_profiles(['alice', 'bob'])   # one actor run
    """

    def __init__(self, backend: Optional[ScraperBackend] = None, token: Optional[str] = APIFY_API_TOKEN,
                 breaker=None):
        if backend is None and token:
            backend = ApifyBackend(token)
        self.backend = backend
        self.breaker = breaker
        self.calls = 0

    @property
    def is_configured(self) -> bool:
        return self.backend is not None

    def estimate_cost(self, count: int, platform: str = INSTAGRAM) -> float:
        return estimate_one(COST_KEYS[platform], count)

    def _run(self, actor_id: str, run_input: Dict) -> List[Dict]:
        if self.breaker is not None:
            return self.breaker.call(self.backend.run, actor_id, run_input)
        return self.backend.run(actor_id, run_input)

    def scrape_profiles_sync(self, usernames: List[str], platform: str = INSTAGRAM) -> Dict[str, ProfileSnapshot]:
        if not self.is_configured:
            raise ConfigurationError("APIFY_API_TOKEN not set — paid scraper disabled")

        names = []
        for u in usernames:
            n = normalize_username(u)
            if n and n not in names:
                names.append(n)
        if not names:
            return {}

        actor_id = ACTORS[platform]
        cost = self.estimate_cost(len(names), platform)
        logger.info("Paid scrape: %d %s profiles via %s (est. $%.4f)",
                    len(names), platform, actor_id, cost, extra={'cost': cost, 'source': 'paid_scraper'})

        started = time.monotonic()
        self.calls += 1
        items = self._run(actor_id, build_run_input(platform, names))

        wanted = set(names)
        results: Dict[str, ProfileSnapshot] = {}
        for item in items:
            snapshot = normalize(wrap_raw(platform, item))
            if snapshot is None or snapshot.username not in wanted:
                continue
            results.setdefault(snapshot.username, snapshot)

        logger.info("Paid scrape returned %d/%d profiles in %.1fs",
                    len(results), len(names), time.monotonic() - started)
        return results

    async def scrape_profiles(self, usernames: List[str], platform: str = INSTAGRAM) -> Dict[str, ProfileSnapshot]:
        """Scrape all usernames in a single actor run; result is keyed by normalized username."""
        return await asyncio.to_thread(self.scrape_profiles_sync, usernames, platform)

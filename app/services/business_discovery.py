"""
Instagram Graph API business discovery — free lookups of other public profiles.

The lookup acts through one of our own connected business accounts (the
"acting account"); the token comes from connected_accounts and is opaque here.
"""
import asyncio
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests

from app.config import GRAPH_API_URL, GRAPH_API_VERSION, GRAPH_API_TIMEOUT
from app.database import get_session
from app.models.subject import ConnectedAccount
from app.pipeline.base import ProfileSnapshot, normalize_username, post_summary, rank_top_posts
from app.pipeline.errors import SourceUnavailable, TransientNetworkError

logger = logging.getLogger('services.business_discovery')

SOURCE = 'business_discovery'

MEDIA_FIELDS = 'id,caption,like_count,comments_count,media_type,media_url,thumbnail_url,permalink,timestamp'
PROFILE_FIELDS = (
    'username,name,biography,website,followers_count,follows_count,media_count,'
    'profile_picture_url,media.limit(12){' + MEDIA_FIELDS + '}'
)

_HASHTAG_RE = re.compile(r'#(\w+)', re.UNICODE)


@dataclass
class ActingAccount:
    username: str
    platform_user_id: str
    access_token: str


def engagement_rate(followers: Optional[int], media: List[Dict]) -> Optional[float]:
    """Average (likes + comments) per post as a percentage of followers."""
    if not followers or not media:
        return None
    interactions = [(m.get('like_count') or 0) + (m.get('comments_count') or 0) for m in media]
    avg = sum(interactions) / len(interactions)
    return round(avg / followers * 100, 2)


def top_hashtags(media: List[Dict], limit: int = 10) -> List[str]:
    counts = Counter()
    for m in media:
        for tag in _HASHTAG_RE.findall(m.get('caption') or ''):
            counts[tag.lower()] += 1
    return [tag for tag, _ in counts.most_common(limit)]


def top_posts(media: List[Dict]) -> List[Dict]:
    return rank_top_posts([
        post_summary(m.get('id'), m.get('permalink'), m.get('caption'),
                     m.get('like_count'), m.get('comments_count'), m.get('timestamp'),
                     image_url=m.get('media_url') or m.get('thumbnail_url'))
        for m in media
    ])


class BusinessDiscoveryClient:
    """requests-based client for the business_discovery field expansion."""

    def __init__(self, api_url: str = GRAPH_API_URL, api_version: str = GRAPH_API_VERSION,
                 timeout: int = GRAPH_API_TIMEOUT, session_factory: Optional[Callable] = None):
        self.api_url = api_url.rstrip('/')
        self.api_version = api_version
        self.timeout = timeout
        self._session_factory = session_factory or get_session

    def pick_acting_account(self) -> Optional[ActingAccount]:
        """First active connected account that has a token, or None."""
        session = self._session_factory()
        try:
            row = (
                session.query(ConnectedAccount)
                .filter(ConnectedAccount.is_active.is_(True),
                        ConnectedAccount.access_token.isnot(None),
                        ConnectedAccount.platform_user_id.isnot(None))
                .order_by(ConnectedAccount.id)
                .first()
            )
            if row is None:
                return None
            return ActingAccount(
                username=normalize_username(row.username),
                platform_user_id=row.platform_user_id,
                access_token=row.access_token,
            )
        finally:
            session.close()

    def lookup(self, account: ActingAccount, target_username: str) -> ProfileSnapshot:
        """
        Fetch a public profile through the acting account.

        Raises SourceUnavailable when the API has no usable data (including a
        self-lookup) and TransientNetworkError on timeouts or non-2xx replies.
        """
        target = normalize_username(target_username)
        if not target:
            raise SourceUnavailable(SOURCE, 'empty username')
        if target == account.username:
            raise SourceUnavailable(SOURCE, 'cannot look up the acting account itself')

        url = f"{self.api_url}/{self.api_version}/{account.platform_user_id}"
        params = {
            'fields': f'business_discovery.username({target}){{{PROFILE_FIELDS}}}',
            'access_token': account.access_token,
        }
        try:
            resp = requests.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransientNetworkError(SOURCE, str(e)) from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if isinstance(data, dict) and data.get('error'):
            message = data['error'].get('message', 'unknown error')
            if resp.status_code >= 500 or resp.status_code == 429:
                raise TransientNetworkError(SOURCE, f"HTTP {resp.status_code}: {message}")
            raise SourceUnavailable(SOURCE, message)
        if not resp.ok:
            raise TransientNetworkError(SOURCE, f"HTTP {resp.status_code}")

        discovered = data.get('business_discovery') if isinstance(data, dict) else None
        if not discovered:
            raise SourceUnavailable(SOURCE, f"no business profile for {target}")

        return self.to_snapshot(target, discovered)

    @staticmethod
    def to_snapshot(target: str, discovered: Dict) -> ProfileSnapshot:
        media = (discovered.get('media') or {}).get('data') or []
        followers = discovered.get('followers_count')
        return ProfileSnapshot(
            username=normalize_username(discovered.get('username')) or target,
            full_name=discovered.get('name') or None,
            bio=discovered.get('biography') or None,
            followers=followers,
            following=discovered.get('follows_count'),
            posts_count=discovered.get('media_count'),
            profile_pic_url=discovered.get('profile_picture_url') or None,
            external_url=discovered.get('website') or None,
            engagement_rate=engagement_rate(followers, media),
            top_hashtags=top_hashtags(media) or None,
            top_posts=top_posts(media) or None,
        )

    async def lookup_async(self, account: ActingAccount, target_username: str) -> ProfileSnapshot:
        return await asyncio.to_thread(self.lookup, account, target_username)

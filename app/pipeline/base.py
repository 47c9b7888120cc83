"""
Pipeline contracts — value types shared by every tier.

Every source adapter normalizes into a ProfileSnapshot. The resolver merges
snapshots, writes them through the cache store and hands callers a
ResolutionOutcome; "no data" is an outcome status, never an exception.
"""
import enum
import re
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ── Time helpers ──────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-naive DateTime columns it is written to."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ── Usernames ─────────────────────────────────────────────────────────────────

_SCHEME_RE = re.compile(r'^[a-z][a-z0-9+.-]*://', re.IGNORECASE)
# Social hosts are recognized without a scheme too ('instagram.com/alice').
_SOCIAL_HOST_RE = re.compile(
    r'^(?:[a-z0-9-]+\.)*(?:instagram\.com|instagr\.am|tiktok\.com|youtube\.com)(?::\d+)?(?=/|$)',
    re.IGNORECASE,
)
# YouTube legacy paths put the name in the second segment.
_CHANNEL_PREFIXES = ('c', 'user', 'channel')


def normalize_username(raw: Optional[str]) -> str:
    """
    Canonical handle: lowercase, no leading '@', no profile URL around it.

        '@Alice'                                  → 'alice'
        'https://www.instagram.com/Alice/?hl=en'  → 'alice'
        'https://www.tiktok.com/@alice/video/1'   → 'alice'
        'youtube.com/c/AliceCooks'                → 'alicecooks'

    Anything that still looks like a URL after stripping normalizes to ''.
    """
    if not raw:
        return ''
    name = raw.strip()
    had_scheme = bool(_SCHEME_RE.match(name))
    name = _SCHEME_RE.sub('', name)
    host = _SOCIAL_HOST_RE.match(name)
    if host:
        name = name[host.end():]
    elif had_scheme:
        # Unknown host: the handle is still the first path segment.
        name = name.partition('/')[2]

    name = name.split('?')[0].split('#')[0]
    segments = [s for s in name.split('/') if s]
    if not segments:
        return ''
    if host and len(segments) > 1 and segments[0].lower() in _CHANNEL_PREFIXES:
        segments = segments[1:]
    name = segments[0].lstrip('@').strip().lower()
    if ':' in name or not name.strip('.'):
        return ''
    return name


# ── Provenance ────────────────────────────────────────────────────────────────

class ProfileSource(str, enum.Enum):
    OWNED_PLATFORM_API = 'owned_platform_api'
    BUSINESS_DISCOVERY = 'business_discovery'
    PAID_SCRAPER = 'paid_scraper'
    MANUAL = 'manual'


# ── Owner scope ───────────────────────────────────────────────────────────────

CREATOR = 'creator'
COMPANY = 'company'
EXTERNAL = 'external'
OWNER_TYPES = (CREATOR, COMPANY, EXTERNAL)


@dataclass(frozen=True)
class SubjectRef:
    """Pointer to a creator or company row that owns a social handle."""
    kind: str
    id: int


@dataclass(frozen=True)
class OwnerScope:
    """Creator(user_id) | Company(company_id) | External — half of the cache key."""
    kind: str
    owner_id: Optional[int] = None

    def __post_init__(self):
        if self.kind not in OWNER_TYPES:
            raise ValueError(f"Unknown owner type '{self.kind}'")
        if self.kind == EXTERNAL and self.owner_id is not None:
            raise ValueError("External scope has no owner id")
        if self.kind != EXTERNAL and self.owner_id is None:
            raise ValueError(f"{self.kind} scope needs an owner id")

    @classmethod
    def creator(cls, user_id: int) -> 'OwnerScope':
        return cls(CREATOR, user_id)

    @classmethod
    def company(cls, company_id: int) -> 'OwnerScope':
        return cls(COMPANY, company_id)

    @classmethod
    def external(cls) -> 'OwnerScope':
        return cls(EXTERNAL)

    @classmethod
    def for_subject(cls, ref: SubjectRef) -> 'OwnerScope':
        return cls(ref.kind, ref.id)

    @property
    def is_subject(self) -> bool:
        return self.kind != EXTERNAL

    def subject_ref(self) -> Optional[SubjectRef]:
        if not self.is_subject:
            return None
        return SubjectRef(self.kind, self.owner_id)


# ── Snapshots ─────────────────────────────────────────────────────────────────

@dataclass
class ProfileSnapshot:
    """Profile fields as returned by one tier; None means the tier didn't know."""
    username: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    followers: Optional[int] = None
    following: Optional[int] = None
    posts_count: Optional[int] = None
    profile_pic_url: Optional[str] = None
    is_verified: Optional[bool] = None
    is_private: Optional[bool] = None
    external_url: Optional[str] = None
    engagement_rate: Optional[float] = None
    top_hashtags: Optional[List[str]] = None
    top_posts: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _is_empty(value) -> bool:
    return value is None or value == '' or value == []


def merge_snapshots(*snapshots: Optional[ProfileSnapshot]) -> Optional[ProfileSnapshot]:
    """
    Fold snapshots left to right. A later non-empty value replaces an earlier
    one; an empty value never replaces anything.
    """
    present = [s for s in snapshots if s is not None]
    if not present:
        return None
    merged = ProfileSnapshot(username=present[-1].username or present[0].username)
    for snap in present:
        for f in fields(ProfileSnapshot):
            if f.name == 'username':
                continue
            value = getattr(snap, f.name)
            if not _is_empty(value):
                setattr(merged, f.name, value)
    return merged


TOP_POSTS_LIMIT = 3
CAPTION_LIMIT = 200


def post_summary(post_id, url, caption, likes, comments, timestamp, image_url=None) -> Dict[str, Any]:
    """One stored post: the same shape whichever source it came from."""
    likes = max(0, int(likes or 0))
    comments = max(0, int(comments or 0))
    return {
        'id': str(post_id) if post_id is not None else None,
        'url': url or None,
        'image_url': image_url or None,
        'caption': (caption or '')[:CAPTION_LIMIT],
        'likes': likes,
        'comments': comments,
        'timestamp': str(timestamp) if timestamp else None,
    }


def rank_top_posts(posts: List[Dict[str, Any]], limit: int = TOP_POSTS_LIMIT) -> List[Dict[str, Any]]:
    """Most engaging first (likes + comments)."""
    return sorted(posts, key=lambda p: p['likes'] + p['comments'], reverse=True)[:limit]


# ── Cache view ────────────────────────────────────────────────────────────────

@dataclass
class CachedProfile:
    """Detached copy of a profile_records row, safe to use after the session closes."""
    username: str
    owner_type: str
    owner_id: Optional[int] = None
    source: Optional[str] = None
    full_name: Optional[str] = None
    bio: Optional[str] = None
    followers: Optional[int] = None
    following: Optional[int] = None
    posts_count: Optional[int] = None
    external_url: Optional[str] = None
    profile_pic_original_url: Optional[str] = None
    profile_pic_storage_path: Optional[str] = None
    is_verified: bool = False
    is_private: bool = False
    engagement_rate: Optional[float] = None
    top_hashtags: Optional[List[str]] = None
    top_posts: Optional[List[Dict[str, Any]]] = None
    last_fetched_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> 'CachedProfile':
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    def to_snapshot(self) -> ProfileSnapshot:
        return ProfileSnapshot(
            username=self.username,
            full_name=self.full_name,
            bio=self.bio,
            followers=self.followers,
            following=self.following,
            posts_count=self.posts_count,
            profile_pic_url=self.profile_pic_original_url,
            is_verified=self.is_verified,
            is_private=self.is_private,
            external_url=self.external_url,
            engagement_rate=self.engagement_rate,
            top_hashtags=self.top_hashtags,
            top_posts=self.top_posts,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.last_fetched_at:
            d['last_fetched_at'] = self.last_fetched_at.isoformat()
        return d


# ── Outcomes ──────────────────────────────────────────────────────────────────

CACHED = 'cached'
REUSED = 'reused'
SUCCESS = 'success'
NOT_FOUND = 'not_found'
ERROR = 'error'

RESOLVED_STATUSES = (CACHED, REUSED, SUCCESS)


@dataclass
class ResolutionOutcome:
    """Discriminated result of resolving one username."""
    username: str
    status: str
    record: Optional[CachedProfile] = None
    public_url: Optional[str] = None
    source: Optional[str] = None
    error: Optional[str] = None
    tiers_tried: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'status': self.status,
            'source': self.source,
            'public_url': self.public_url,
            'error': self.error,
            'tiers_tried': list(self.tiers_tried),
            'profile': self.record.to_dict() if self.record else None,
        }

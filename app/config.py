"""
Centralized configuration — env vars, staleness policy, sync schedule.
"""
import os


def _env_bool(name, default='false'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Cloudflare R2 ─────────────────────────────────────────────────────────────
R2_ACCESS_KEY_ID = os.getenv('R2_ACCESS_KEY_ID')
R2_SECRET_ACCESS_KEY = os.getenv('R2_SECRET_ACCESS_KEY')
R2_BUCKET_NAME = os.getenv('R2_BUCKET_NAME')
R2_ENDPOINT_URL = os.getenv('R2_ENDPOINT_URL')
R2_PUBLIC_URL = os.getenv('R2_PUBLIC_URL')

# Public URLs are base + object path; no signed URLs for profile pictures.
PUBLIC_MEDIA_BASE_URL = os.getenv('PUBLIC_MEDIA_BASE_URL') or R2_PUBLIC_URL or '/api/storage/public'

# ── Profile pictures ─────────────────────────────────────────────────────────
PROFILE_PIC_COLLECTION = os.getenv('PROFILE_PIC_COLLECTION', 'instagram-profiles')
IMAGE_DOWNLOAD_TIMEOUT = int(os.getenv('IMAGE_DOWNLOAD_TIMEOUT', '15'))
MIN_IMAGE_BYTES = int(os.getenv('MIN_IMAGE_BYTES', '200'))
IMAGE_CACHE_CONTROL = 'public, max-age=31536000'

# Treat an independently uploaded avatar as the subject's profile picture.
REUSE_UPLOADED_AVATAR = _env_bool('REUSE_UPLOADED_AVATAR')

# ── Apify (paid scraper) ─────────────────────────────────────────────────────
APIFY_API_TOKEN = os.getenv('APIFY_API_TOKEN')
APIFY_TIMEOUT_SECS = int(os.getenv('APIFY_TIMEOUT_SECS', '120'))
APIFY_WAIT_SECS = int(os.getenv('APIFY_WAIT_SECS', '60'))

# ── Instagram Graph API (business discovery) ─────────────────────────────────
GRAPH_API_URL = os.getenv('GRAPH_API_URL', 'https://graph.instagram.com')
GRAPH_API_VERSION = os.getenv('GRAPH_API_VERSION', 'v21.0')
GRAPH_API_TIMEOUT = int(os.getenv('GRAPH_API_TIMEOUT', '15'))
DISCOVERY_CONCURRENCY = int(os.getenv('DISCOVERY_CONCURRENCY', '10'))

# ── Cache staleness (days) per subject kind ──────────────────────────────────
STALENESS_DAYS = {
    'creator':  int(os.getenv('STALENESS_DAYS_CREATOR', '7')),
    'external': int(os.getenv('STALENESS_DAYS_EXTERNAL', '7')),
    'company':  int(os.getenv('STALENESS_DAYS_COMPANY', '30')),
}

# ── Enrichment queue ─────────────────────────────────────────────────────────
QUEUE_ITEM_DELAY = float(os.getenv('QUEUE_ITEM_DELAY', '2'))
QUEUE_REQUESTS_KEY = 'enrichment:requests'

# ── Scheduled sync ───────────────────────────────────────────────────────────
SYNC_ENABLED = _env_bool('SYNC_ENABLED', 'true')
SYNC_BATCH_SIZE = int(os.getenv('SYNC_BATCH_SIZE', '50'))
SYNC_BATCH_DELAY = float(os.getenv('SYNC_BATCH_DELAY', '3'))
SYNC_SCHEDULE_HOUR = int(os.getenv('SYNC_SCHEDULE_HOUR', '6'))
SYNC_SCHEDULE_MINUTE = int(os.getenv('SYNC_SCHEDULE_MINUTE', '0'))
SYNC_SCHEDULE_TIMEZONE = os.getenv('SYNC_SCHEDULE_TIMEZONE', 'America/Sao_Paulo')

"""
Cloudflare R2 media operations — durable copies of profile pictures.

ImageCache.persist() downloads a remote image, validates it and writes it to
a deterministic key ({collection}/{subject_key}.{ext}). Every failure is soft:
log and return None so the resolver can keep going.
"""
import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import requests
from PIL import Image

from app.config import (
    R2_BUCKET_NAME, PUBLIC_MEDIA_BASE_URL, PROFILE_PIC_COLLECTION,
    IMAGE_DOWNLOAD_TIMEOUT, MIN_IMAGE_BYTES, IMAGE_CACHE_CONTROL,
)
from app.pipeline.errors import ConfigurationError, StorageWriteError

logger = logging.getLogger('services.r2')

# Many image CDNs reject default client user agents.
DOWNLOAD_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/124.0 Safari/537.36'
    ),
    'Accept': 'image/avif,image/webp,image/*,*/*;q=0.8',
}

_SAFE_KEY_RE = re.compile(r'[^a-z0-9._-]+')


# ── Blob stores ───────────────────────────────────────────────────────────────

class BlobStore(ABC):
    """put(bucket, path, bytes, content_type); public URLs are derived, not signed."""

    @abstractmethod
    def put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        ...


class R2BlobStore(BlobStore):
    """BlobStore over the boto3 S3 client pointed at R2."""

    def __init__(self, client, cache_control: str = IMAGE_CACHE_CONTROL):
        self.client = client
        self.cache_control = cache_control

    def put(self, bucket, path, data, content_type):
        self.client.put_object(
            Bucket=bucket, Key=path,
            Body=data, ContentType=content_type,
            CacheControl=self.cache_control,
        )


def build_blob_store(client=None) -> Optional[BlobStore]:
    """R2BlobStore over the shared client, or None when R2 isn't configured."""
    if client is None:
        from app.extensions import r2_client
        client = r2_client
    if client is None:
        return None
    if not R2_BUCKET_NAME:
        raise ConfigurationError("R2 client configured but R2_BUCKET_NAME is not set")
    return R2BlobStore(client)


# ── Image cache ───────────────────────────────────────────────────────────────

class ImageCache:
    """Storage-backed image cache for profile pictures."""

    def __init__(self, blob_store: Optional[BlobStore], bucket: Optional[str] = R2_BUCKET_NAME,
                 public_base_url: str = PUBLIC_MEDIA_BASE_URL,
                 collection: str = PROFILE_PIC_COLLECTION,
                 timeout: int = IMAGE_DOWNLOAD_TIMEOUT,
                 min_bytes: int = MIN_IMAGE_BYTES):
        self.blob_store = blob_store
        self.bucket = bucket
        self.public_base_url = (public_base_url or '').rstrip('/')
        self.collection = collection.strip('/')
        self.timeout = timeout
        self.min_bytes = min_bytes

    @property
    def enabled(self) -> bool:
        return self.blob_store is not None

    # ── Paths and URLs ────────────────────────────────────────────────

    def object_path(self, subject_key: str, ext: str) -> str:
        key = _SAFE_KEY_RE.sub('_', subject_key.strip().lower()).strip('_')
        return f"{self.collection}/{key}.{ext}"

    def resolve_public_url(self, path: Optional[str]) -> Optional[str]:
        """Pure: base URL + object path."""
        if not path:
            return None
        return f"{self.public_base_url}/{path.lstrip('/')}"

    def is_storage_url(self, url: Optional[str]) -> bool:
        """True if url already points at our durable copy of an image."""
        if not url or not self.public_base_url:
            return False
        return url.startswith(f"{self.public_base_url}/{self.collection}/")

    def path_from_url(self, url: Optional[str]) -> Optional[str]:
        if not self.is_storage_url(url):
            return None
        return url[len(self.public_base_url) + 1:]

    # ── Download + validate ───────────────────────────────────────────

    @staticmethod
    def _extension(content_type: str) -> Tuple[str, str]:
        if 'png' in (content_type or '').lower():
            return 'png', 'image/png'
        return 'jpg', 'image/jpeg'

    def download(self, remote_url: str) -> Optional[Tuple[bytes, str]]:
        """Fetch and validate image bytes. Returns (bytes, content_type) or None."""
        try:
            response = requests.get(remote_url, headers=DOWNLOAD_HEADERS, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning("Image download timed out after %ss: %s", self.timeout, remote_url)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("Image download failed: %s (%s)", remote_url, e)
            return None

        if not response.ok:
            logger.warning("Image download returned HTTP %s: %s", response.status_code, remote_url)
            return None

        data = response.content or b''
        if len(data) < self.min_bytes:
            logger.warning("Image too small (%d bytes < %d), treating as placeholder: %s",
                           len(data), self.min_bytes, remote_url)
            return None

        try:
            Image.open(io.BytesIO(data)).verify()
        except Exception as e:
            logger.warning("Downloaded bytes are not a valid image (%s): %s", e, remote_url)
            return None

        return data, response.headers.get('Content-Type', '')

    def store(self, subject_key: str, data: bytes, content_type: str) -> str:
        """Write validated bytes; overwrites any earlier image for the key."""
        ext, normalized_type = self._extension(content_type)
        path = self.object_path(subject_key, ext)
        try:
            self.blob_store.put(self.bucket, path, data, normalized_type)
        except Exception as e:
            raise StorageWriteError(f"put {path} failed: {e}") from e
        return path

    def persist_sync(self, subject_key: str, remote_url: str) -> Optional[str]:
        if not remote_url:
            return None
        if not self.enabled:
            logger.debug("No blob store configured — skipping image for %s", subject_key)
            return None

        downloaded = self.download(remote_url)
        if downloaded is None:
            return None

        data, content_type = downloaded
        try:
            path = self.store(subject_key, data, content_type)
        except StorageWriteError as e:
            logger.error("Storage write failed for %s: %s", subject_key, e)
            return None

        logger.info("Stored profile picture for %s at %s (%d bytes)", subject_key, path, len(data))
        return path

    async def persist(self, subject_key: str, remote_url: str) -> Optional[str]:
        """Download remote_url and store it durably. Returns the storage path or None."""
        try:
            return await asyncio.to_thread(self.persist_sync, subject_key, remote_url)
        except Exception as e:
            logger.error("Unexpected error persisting image for %s: %s", subject_key, e)
            return None

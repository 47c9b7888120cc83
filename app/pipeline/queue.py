"""
Enrichment queue — in-process, single-flight FIFO for organic refreshes.

Producers (signups, handle changes) enqueue (subject_id, username); one drain
task resolves items one at a time through the single-username resolver, with a
fixed gap between items. Failed items are logged and dropped: the scheduled
sync is the retry mechanism.

Web processes can't reach the worker's event loop, so they hand requests over
through a Redis list (submit_request → pump_requests).
"""
import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional, Set, Tuple

from app.config import QUEUE_ITEM_DELAY, QUEUE_REQUESTS_KEY
from app.pipeline.base import OwnerScope, SubjectRef, CREATOR, normalize_username
from app.pipeline.scheduler import RateLimiter

logger = logging.getLogger('pipeline.queue')


@dataclass(frozen=True)
class QueueItem:
    subject_id: int
    username: str
    kind: str = CREATOR

    @property
    def key(self) -> Tuple[str, int]:
        return self.kind, self.subject_id


class EnrichmentQueue:

    def __init__(self, resolver, limiter: Optional[RateLimiter] = None,
                 delay: float = QUEUE_ITEM_DELAY, secondary=None):
        self.resolver = resolver
        self.limiter = limiter or RateLimiter(delay)
        self.secondary = secondary
        self._pending: Deque[QueueItem] = deque()
        self._pending_keys: Set[Tuple[str, int]] = set()
        self._task: Optional[asyncio.Task] = None
        self.is_processing = False
        self.processed = 0
        self.failed = 0

    def enqueue(self, subject_id: int, username: str, kind: str = CREATOR) -> bool:
        """Queue a subject for enrichment. False if it's already pending or the handle is empty."""
        name = normalize_username(username)
        if not name:
            logger.debug("Ignoring empty handle for %s:%s", kind, subject_id)
            return False
        item = QueueItem(subject_id=subject_id, username=name, kind=kind)
        if item.key in self._pending_keys:
            logger.debug("%s:%s already queued", kind, subject_id)
            return False

        self._pending.append(item)
        self._pending_keys.add(item.key)
        logger.info("Queued %s:%s (@%s), %d pending", kind, subject_id, name, len(self._pending))
        self.ensure_draining()
        return True

    def ensure_draining(self):
        """Start the drain task if there is work and none is running."""
        if self.is_processing or not self._pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop — drain deferred")
            return
        self.is_processing = True
        self._task = loop.create_task(self._drain())

    async def _drain(self):
        try:
            while self._pending:
                item = self._pending.popleft()
                self._pending_keys.discard(item.key)
                async with self.limiter:
                    await self._process(item)
        finally:
            self.is_processing = False
            self._task = None

    async def _process(self, item: QueueItem):
        scope = OwnerScope.for_subject(SubjectRef(item.kind, item.subject_id))
        try:
            outcome = await self.resolver.resolve(item.username, scope=scope)
        except Exception as e:
            self.failed += 1
            logger.error("Enrichment of %s:%s failed: %s", item.kind, item.subject_id, e)
            return

        if not outcome.resolved:
            self.failed += 1
            logger.warning("Enrichment of %s:%s (@%s) ended %s: %s",
                           item.kind, item.subject_id, item.username, outcome.status, outcome.error or '')
            return

        self.processed += 1
        logger.info("Enriched %s:%s (@%s) → %s", item.kind, item.subject_id, item.username, outcome.status)

        if self.secondary is not None:
            try:
                await self.secondary.enrich(scope.subject_ref())
            except Exception as e:
                logger.warning("Secondary platforms failed for %s:%s: %s", item.kind, item.subject_id, e)

    def status(self) -> dict:
        return {
            'queue_length': len(self._pending),
            'is_processing': self.is_processing,
            'processed': self.processed,
            'failed': self.failed,
        }

    async def join(self):
        """Drain anything pending and wait until the queue is idle."""
        self.ensure_draining()
        while self._task is not None:
            await asyncio.shield(self._task)


# ── Cross-process hand-off ────────────────────────────────────────────────────

def submit_request(redis_client, subject_id: int, username: str, kind: str = CREATOR,
                   key: str = QUEUE_REQUESTS_KEY) -> bool:
    """Push an enrichment request for the worker process to pick up."""
    if not normalize_username(username):
        return False
    redis_client.rpush(key, json.dumps({'subject_id': subject_id, 'username': username, 'kind': kind}))
    return True


async def pump_requests(queue: EnrichmentQueue, redis_client, key: str = QUEUE_REQUESTS_KEY,
                        poll_timeout: int = 5,
                        should_stop: Callable[[], bool] = lambda: False,
                        to_thread: Callable[..., Awaitable] = asyncio.to_thread):
    """Move requests from the Redis list into the in-process queue until should_stop()."""
    while not should_stop():
        try:
            popped = await to_thread(redis_client.blpop, [key], timeout=poll_timeout)
        except Exception as e:
            logger.error("Reading enrichment requests failed: %s", e)
            await asyncio.sleep(poll_timeout)
            continue
        if not popped:
            continue
        _, payload = popped
        try:
            data = json.loads(payload)
            queue.enqueue(int(data['subject_id']), data['username'], data.get('kind', CREATOR))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Dropping malformed enrichment request %r: %s", payload, e)

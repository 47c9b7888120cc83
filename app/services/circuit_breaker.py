"""
Circuit breakers for the outbound enrichment tiers, with Redis-backed state.

Each breaker tracks failures per service in Redis. States:
  - CLOSED    → normal operation, calls pass through
  - OPEN      → too many failures, calls short-circuit with CircuitOpenError
  - HALF_OPEN → after reset_timeout, allows one trial call

The resolver treats an OPEN breaker like an unavailable tier and moves on.
Exceptions listed in `ignore` (e.g. "profile not found") are routine answers,
not outages, and never count as failures. If Redis is down every breaker
fails open. Health metrics live in Redis hashes for /api/health.
"""
import logging
import time
from functools import wraps

logger = logging.getLogger('services.circuit_breaker')

# State constants
CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    """
    Redis-backed circuit breaker.

    Usage:
        cb = CircuitBreaker('apify', redis_client, failure_threshold=3, reset_timeout=300)
        items = cb.call(backend.run, actor_id, run_input)
        snapshot = await cb.call_async(client.lookup_async, account, 'alice')
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300, ignore=()):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout  # seconds before OPEN → HALF_OPEN
        self.ignore = tuple(ignore)

    # ── Redis keys ────────────────────────────────────────────────────

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State management ──────────────────────────────────────────────

    @property
    def state(self):
        try:
            s = self.redis.get(self._key('state'))
            if s is None:
                return CLOSED
            if s == OPEN:
                last = self.redis.get(self._key('last_failure'))
                if last and (time.time() - float(last)) > self.reset_timeout:
                    self._set_state(HALF_OPEN)
                    return HALF_OPEN
            return s
        except Exception:
            return CLOSED  # fail-open: if Redis is down, allow calls

    def _set_state(self, new_state):
        try:
            self.redis.set(self._key('state'), new_state)
        except Exception:
            logger.debug("Could not persist state for circuit '%s'", self.name)

    @property
    def failure_count(self):
        try:
            val = self.redis.get(self._key('failures'))
            return int(val) if val else 0
        except Exception:
            return 0

    def is_available(self):
        """False only while OPEN; HALF_OPEN lets a trial call through."""
        return self.state != OPEN

    def _retry_after(self):
        try:
            last = self.redis.get(self._key('last_failure'))
        except Exception:
            return None
        if not last:
            return None
        return max(0, self.reset_timeout - (time.time() - float(last)))

    # ── Health metrics ────────────────────────────────────────────────

    def _record(self, outcome, error_msg=''):
        try:
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), outcome, 1)
            pipe.hset(self._key('health'), f'last_{outcome}', str(time.time()))
            if error_msg:
                pipe.hset(self._key('health'), 'last_error', str(error_msg)[:200])
            pipe.execute()
        except Exception:
            logger.debug("Could not record %s for circuit '%s'", outcome, self.name)

    def get_health(self):
        """Return health metrics dict for this service."""
        base = {
            'name': self.name,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
        }
        try:
            data = self.redis.hgetall(self._key('health'))
            base.update({
                'state': self.state,
                'failure_count': self.failure_count,
                'total_success': int(data.get('success', 0)),
                'total_failure': int(data.get('failure', 0)),
                'last_success': float(data['last_success']) if data.get('last_success') else None,
                'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
                'last_error': data.get('last_error', ''),
            })
        except Exception:
            base.update({
                'state': 'unknown',
                'failure_count': 0,
                'total_success': 0,
                'total_failure': 0,
                'last_success': None,
                'last_failure': None,
                'last_error': '',
            })
        return base

    # ── Core call logic ───────────────────────────────────────────────

    def _check(self):
        if self.state == OPEN:
            raise CircuitOpenError(self.name, retry_after=self._retry_after())

    def call(self, func, *args, **kwargs):
        """Execute func through the circuit breaker."""
        self._check()
        try:
            result = func(*args, **kwargs)
        except self.ignore:
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    async def call_async(self, func, *args, **kwargs):
        """Await func(*args, **kwargs) through the circuit breaker."""
        self._check()
        try:
            result = await func(*args, **kwargs)
        except self.ignore:
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        """Reset failure count, close circuit."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.execute()
        except Exception:
            logger.debug("Could not close circuit '%s'", self.name)
        self._record('success')

    def _on_failure(self, error):
        """Increment failures, open circuit if threshold reached."""
        try:
            new_count = self.redis.incr(self._key('failures'))
            self.redis.set(self._key('last_failure'), str(time.time()))
            if new_count >= self.failure_threshold:
                self._set_state(OPEN)
                logger.warning(
                    "Circuit '%s' OPENED after %d failures (threshold=%d): %s",
                    self.name, new_count, self.failure_threshold, error,
                )
            else:
                logger.info(
                    "Circuit '%s' failure %d/%d: %s",
                    self.name, new_count, self.failure_threshold, error,
                )
        except Exception:
            logger.debug("Could not count failure for circuit '%s'", self.name)
        self._record('failure', str(error))

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def protect(self, func):
        """Decorator form of the circuit breaker."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper


# ── Global registry ───────────────────────────────────────────────────────

_registry = {}


def get_breaker(name, redis_client=None, **kwargs):
    """Get or create a named circuit breaker (singleton per name)."""
    if name not in _registry:
        if redis_client is None:
            from app.extensions import redis_client as rc
            redis_client = rc
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    """Return all registered circuit breakers."""
    return dict(_registry)


def init_breakers(redis_client):
    """Initialize breakers for every outbound enrichment tier."""
    from app.pipeline.errors import SourceUnavailable

    breakers = {
        'apify': CircuitBreaker('apify', redis_client, failure_threshold=3, reset_timeout=300),
        'business_discovery': CircuitBreaker(
            'business_discovery', redis_client, failure_threshold=5, reset_timeout=120,
            ignore=(SourceUnavailable,),
        ),
    }
    _registry.update(breakers)
    return breakers

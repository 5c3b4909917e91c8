import logging
import os, time, threading
import redis
from flask import current_app

from ..errors import RateLimited

logger = logging.getLogger(__name__)

_r = None
_lock = threading.Lock()

class _MemStore:
    def __init__(self):
        self._data = {}
        self._exp = {}
        self._lock = threading.Lock()

    def _cleanup(self):
        now = time.time()
        expired = [k for k, ts in self._exp.items() if ts <= now]
        for k in expired:
            self._data.pop(k, None)
            self._exp.pop(k, None)

    def incr(self, key):
        with self._lock:
            self._cleanup()
            v = int(self._data.get(key, '0')) + 1
            self._data[key] = str(v)
            return v

    def expire(self, key, ttl):
        with self._lock:
            self._cleanup()
            self._exp[key] = time.time() + ttl

def r():
    global _r
    if _r is not None:
        return _r
    with _lock:
        if _r is not None:
            return _r
        # Decide whether to use Redis or memory store
        use_redis = os.environ.get('USE_REDIS', '1').lower() not in ('0', 'false', 'no')
        url = current_app.config.get('REDIS_URL')
        if use_redis and url:
            try:
                client = redis.from_url(url, decode_responses=True)
                # Test connection once; fallback to memory on failure
                client.ping()
                _set(client)
                return _r
            except redis.RedisError:
                logger.warning('redis unavailable, rate limits kept in memory')
        # Fallback to in-memory store
        _set(_MemStore())
        return _r

def _set(store):
    global _r
    _r = store

def reset():
    _set(None)

def check_rate_ip(ip: str, scope: str = 'qr', limit: int | None = None, window: int | None = None):
    limit = limit or current_app.config.get('QR_LOGIN_RATE_LIMIT', 20)
    window = window or current_app.config.get('QR_LOGIN_RATE_WINDOW', 60)
    k = f"rl:{scope}:{ip}:{int(time.time()//window)}"
    v = r().incr(k)
    r().expire(k, window)
    if v > limit:
        raise RateLimited()

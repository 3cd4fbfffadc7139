"""
Redis cache for packaging reads.

Values are the JSON-ready dicts the blueprint returns (quantities already
rendered to strings), so they are stored with plain json. Every key belongs
to one product and any tree or stock mutation drops all keys of that product.
"""

import logging
import json
from typing import Any, Optional, Callable

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


class CacheService:
    """
    Product-scoped cache-aside over Redis.

    Keys: {prefix}:product:{product_id}:{module}:{key}
    Modules in use: packagings, hierarchy, stock, convert.

    Redis failures degrade to a miss; loader errors always propagate.
    """

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None,
                 prefix: str = 'wms'):
        self.client: Optional[redis.Redis] = client
        self.prefix = prefix
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', self.prefix)
        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via config")
            self.client = None
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            retry_on_timeout=True,
            health_check_interval=30
        )
        try:
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url}: {e}. Cache disabled.")
            self.client = None
            return
        self.client = client
        logger.info(f"[CACHE] Redis connected: {redis_url}")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key(self, product_id: int, module: str, key: str) -> str:
        return f"{self.prefix}:product:{product_id}:{module}:{key}"

    def get(self, product_id: int, module: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(self.key(product_id, module, key))
        except RedisError as e:
            logger.warning(f"[CACHE] Read failed for product {product_id} ({module}): {e}")
            return None
        return json.loads(raw) if raw is not None else None

    def set(self, product_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
        try:
            self.client.setex(self.key(product_id, module, key), ttl, json.dumps(value))
        except RedisError as e:
            logger.warning(f"[CACHE] Write failed for product {product_id} ({module}): {e}")
            return False
        return True

    def memoize(self, product_id: int, module: str, key: str,
                loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        cached = self.get(product_id, module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(product_id, module, key, value, ttl)
        return value

    def invalidate_product(self, product_id: int) -> int:
        """Drop every cached read of a product. Returns the number of keys removed."""
        if not self.enabled:
            return 0
        pattern = self.key(product_id, '*', '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation failed for product {product_id}: {e}")
            return 0
        if keys:
            logger.info(f"[CACHE] INVALIDATE {pattern} ({len(keys)} keys)")
        return len(keys)


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    """Create the cache singleton and register it on the app."""
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service

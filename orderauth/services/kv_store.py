import json
import logging
import time
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from orderauth.services.data_cache import Clock, TTLCache
from orderauth.services.errors import KeyValueStoreError

logger = logging.getLogger(__name__)

AUTH_PREFIX = "auth."
USER_SESSION_KEY = "auth.userSession"
PENDING_REGISTRATION_KEY = "auth.pendingRegistration"
PROVIDER_SESSION_KEY = "auth.provider.session"
PROVIDER_CODE_VERIFIER_KEY = "auth.provider.codeVerifier"
# Outside the auth prefix so that logging out never resets it.
ADMIN_SETUP_COMPLETE_KEY = "adminSetupComplete"


class KeyValueStore:
    """JSON values in redis under a fixed namespace, with a short read cache."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        namespace: str = "",
        cache_ttl: float = 300,
        clock: Clock = time.time,
    ):
        self._redis = redis_client
        self._namespace = namespace
        self._cache: TTLCache[Any] = TTLCache(cache_ttl, clock=clock)

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str, *, use_cache: bool = True) -> Any | None:
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as exc:
            raise KeyValueStoreError(f"Failed to read {key}") from exc
        if raw is None:
            return None

        value = json.loads(raw)
        if use_cache:
            self._cache.set(key, value)
        return value

    async def set(self, key: str, value: Any) -> None:
        try:
            await self._redis.set(self._key(key), json.dumps(value))
        except RedisError as exc:
            raise KeyValueStoreError(f"Failed to write {key}") from exc
        self._cache.set(key, value)

    async def remove(self, key: str) -> None:
        self._cache.invalidate(key)
        try:
            await self._redis.delete(self._key(key))
        except RedisError as exc:
            raise KeyValueStoreError(f"Failed to remove {key}") from exc

    async def keys(self, prefix: str = "") -> list[str]:
        pattern = f"{self._namespace}{prefix}*"
        found: list[str] = []
        try:
            async for raw_key in self._redis.scan_iter(match=pattern):
                key = raw_key.decode() if isinstance(raw_key, bytes) else raw_key
                found.append(key[len(self._namespace) :])
        except RedisError as exc:
            raise KeyValueStoreError(f"Failed to list keys under {prefix}") from exc
        return found

    async def remove_prefix(self, prefix: str) -> int:
        for cached_key in self._cache.keys():
            if str(cached_key).startswith(prefix):
                self._cache.invalidate(cached_key)
        keys = await self.keys(prefix)
        if not keys:
            return 0
        try:
            await self._redis.delete(*(self._key(key) for key in keys))
        except RedisError as exc:
            raise KeyValueStoreError(f"Failed to remove keys under {prefix}") from exc
        logger.debug("Removed %d persisted keys under %s", len(keys), prefix)
        return len(keys)

from __future__ import annotations

import logging
from typing import Any

from redis import asyncio as redis
from redis.asyncio.client import Redis

from degen_executor.common import log_event

from .helpers import now_iso, serialize_for_redis
from .settings import StorageSettings

_RELEASE_GUARD_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


class RedisClaimJournal:
    """Heartbeat, per-claim execution guard and outcome records in Redis.

    With no REDIS_URL configured every operation is a no-op and guards are always granted,
    so a single executor runs exactly as it would with the journal attached.
    """

    def __init__(self, settings: StorageSettings, logger: logging.Logger) -> None:
        self.settings = settings
        self._logger = logger
        self._redis: Redis | None = None

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    async def connect(self) -> None:
        if not self.enabled:
            log_event(
                self._logger,
                level="info",
                event="claim_journal_disabled",
                message="REDIS_URL is not set; claim journal disabled",
            )
            return

        self._redis = redis.from_url(self.settings.redis_url, decode_responses=True)
        await self._redis.ping()
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis",
            instance_id=self.settings.instance_id,
        )

    async def close(self) -> None:
        if self._redis is not None:
            close = getattr(self._redis, "aclose", None)
            if close:
                await close()
            else:
                await self._redis.close()
            self._redis = None

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis

    def _guard_key(self, claim: str) -> str:
        return f"{self.settings.claim_guard_prefix}:{claim}"

    def _record_key(self, claim: str) -> str:
        return f"{self.settings.claim_record_prefix}:{claim}"

    async def acquire_claim_guard(self, *, claim: str, owner: str, ttl_seconds: int) -> bool:
        if not self.enabled:
            return True
        acquired = await self._require_redis().set(
            self._guard_key(claim),
            owner,
            ex=max(1, ttl_seconds),
            nx=True,
        )
        return bool(acquired)

    async def release_claim_guard(self, *, claim: str, owner: str) -> bool:
        if not self.enabled:
            return True
        deleted = await self._require_redis().eval(_RELEASE_GUARD_SCRIPT, 1, self._guard_key(claim), owner)
        return bool(deleted)

    async def record_claim_outcome(self, *, claim: str, report: dict[str, Any]) -> None:
        if not self.enabled:
            return
        redis_client = self._require_redis()
        record_key = self._record_key(claim)

        mapping = {str(key): serialize_for_redis(value) for key, value in report.items() if value is not None}
        mapping["updated_at"] = now_iso()
        mapping["instance_id"] = self.settings.instance_id

        await redis_client.hset(record_key, mapping=mapping)
        await redis_client.hincrby(record_key, "visits", 1)
        await redis_client.expire(record_key, self.settings.claim_record_ttl_seconds)

    async def get_claim_outcome(self, *, claim: str) -> dict[str, str] | None:
        if not self.enabled:
            return None
        payload = await self._require_redis().hgetall(self._record_key(claim))
        return payload or None

    async def update_heartbeat(self, *, details: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        redis_client = self._require_redis()
        mapping = {
            "instance_id": self.settings.instance_id,
            "updated_at": now_iso(),
        }
        for key, value in (details or {}).items():
            mapping[str(key)] = serialize_for_redis(value)

        await redis_client.hset(self.settings.heartbeat_key, mapping=mapping)
        await redis_client.expire(self.settings.heartbeat_key, self.settings.heartbeat_ttl_seconds)

"""Verification-key handle cache, keyed by blueprint id.

Races are harmless: two workers registering the same key converge because
the relay answers the second registration with the existing handle.
"""
from __future__ import annotations

import asyncio
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from questboard.logging_config import get_logger

logger = get_logger(__name__)

_KEY_PREFIX = "vkhash:"


class VerificationKeyCache(Protocol):
    async def get(self, blueprint_id: str) -> str | None: ...

    async def set(self, blueprint_id: str, vk_hash: str) -> None: ...


class InMemoryVerificationKeyCache:
    """Process-local cache."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, blueprint_id: str) -> str | None:
        async with self._lock:
            return self._entries.get(blueprint_id)

    async def set(self, blueprint_id: str, vk_hash: str) -> None:
        async with self._lock:
            self._entries[blueprint_id] = vk_hash


class RedisVerificationKeyCache:
    """Cache shared by every worker through Redis.

    Redis failures degrade to a cache miss; the relay stays the source of
    truth for registered keys.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def get(self, blueprint_id: str) -> str | None:
        try:
            return await self.redis.get(f"{_KEY_PREFIX}{blueprint_id}")
        except RedisError as e:
            logger.warning("vk_cache_read_failed", blueprint_id=blueprint_id, error=str(e))
            return None

    async def set(self, blueprint_id: str, vk_hash: str) -> None:
        try:
            await self.redis.setex(f"{_KEY_PREFIX}{blueprint_id}", self.ttl_seconds, vk_hash)
        except RedisError as e:
            logger.warning("vk_cache_write_failed", blueprint_id=blueprint_id, error=str(e))

"""
Durable step-result cache.

Entries are keyed by ``(instance_id, step_name)`` and stored as JSON, so a
step result must be JSON-serialisable. A cached entry is what lets a
resumed workflow skip work that already succeeded.
"""

import json
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()

KEY_PREFIX = "sitegen:step"


def step_key(instance_id: str, step_name: str) -> str:
    return f"{KEY_PREFIX}:{instance_id}:{step_name}"


@runtime_checkable
class DurableStepCache(Protocol):
    async def get(self, instance_id: str, step_name: str) -> Optional[Any]:
        ...

    async def put(self, instance_id: str, step_name: str, value: Any) -> None:
        ...


class InMemoryStepCache:
    """Process-local cache; survives workflow re-runs but not process restarts."""

    def __init__(self):
        self._entries: Dict[str, str] = {}

    async def get(self, instance_id: str, step_name: str) -> Optional[Any]:
        raw = self._entries.get(step_key(instance_id, step_name))
        return None if raw is None else json.loads(raw)

    async def put(self, instance_id: str, step_name: str, value: Any) -> None:
        self._entries[step_key(instance_id, step_name)] = json.dumps(value)

    def steps_for(self, instance_id: str) -> List[str]:
        prefix = step_key(instance_id, "")
        return sorted(k[len(prefix):] for k in self._entries if k.startswith(prefix))

    def clear(self, instance_id: Optional[str] = None) -> None:
        if instance_id is None:
            self._entries.clear()
            return
        prefix = step_key(instance_id, "")
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]


class RedisStepCache:
    """Redis-backed cache shared by every engine process pointing at the same server."""

    def __init__(self, redis_url: str, ttl_seconds: int = 7 * 24 * 3600,
                 client: Optional[aioredis.Redis] = None):
        self.ttl = ttl_seconds
        self.redis_client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info("Redis step cache initialized", ttl=ttl_seconds)

    async def get(self, instance_id: str, step_name: str) -> Optional[Any]:
        key = step_key(instance_id, step_name)
        try:
            value = await self.redis_client.get(key)
        except aioredis.RedisError as e:
            # A miss only costs a re-run of an idempotent step
            logger.error("Step cache get failed", key=key, error=str(e))
            return None
        return None if value is None else json.loads(value)

    async def put(self, instance_id: str, step_name: str, value: Any) -> None:
        key = step_key(instance_id, step_name)
        await self.redis_client.setex(key, self.ttl, json.dumps(value))

    async def close(self) -> None:
        await self.redis_client.aclose()

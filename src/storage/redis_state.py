# src/storage/redis_state.py
from __future__ import annotations
import json
from typing import Any
from redis.asyncio import Redis

PREFIX = "pricer"

def key(namespace: str, prefix: str = PREFIX) -> str:
    # {prefix}:state:{NAMESPACE}  -> one hash per namespace
    return f"{prefix}:state:{namespace}"

def _decode(raw) -> Any:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        # foreign value: read as missing
        return None

class RedisStateStore:
    """
    Redis-backed StateStore. Every namespace is a hash, values are JSON.
    HGET/HSET/HDEL are atomic per field, which is all the pricing core assumes.
    """
    def __init__(self, redis: Redis, prefix: str = PREFIX):
        self.r = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = PREFIX) -> "RedisStateStore":
        return cls(Redis.from_url(url, decode_responses=True), prefix=prefix)

    async def get(self, namespace: str, field: str) -> Any:
        return _decode(await self.r.hget(key(namespace, self.prefix), field))

    async def set(self, namespace: str, field: str, value: Any) -> None:
        await self.r.hset(key(namespace, self.prefix), field, json.dumps(value))

    async def delete(self, namespace: str, field: str) -> None:
        await self.r.hdel(key(namespace, self.prefix), field)

    async def get_all(self, namespace: str) -> list[Any]:
        vals = await self.r.hvals(key(namespace, self.prefix))
        out = []
        for raw in vals or []:
            v = _decode(raw)
            if v is not None:
                out.append(v)
        return out

    async def items(self, namespace: str) -> list[tuple[str, Any]]:
        # undecodable values come back as None so they can still be deleted by key
        raw = await self.r.hgetall(key(namespace, self.prefix))
        return [(f, _decode(v)) for f, v in (raw or {}).items()]

    async def clear(self, namespace: str) -> None:
        await self.r.delete(key(namespace, self.prefix))

    async def close(self) -> None:
        await self.r.aclose()

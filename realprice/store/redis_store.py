"""Redis-backed document store.

Layout: one hash per collection (``{prefix}:{collection}``), one JSON
document per hash field. Multi-path updates run as a single Lua script, so
Redis applies them atomically.
"""

import json
import logging
from typing import Any, Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from realprice import metrics
from realprice.config import settings
from realprice.store.base import (
    SERVER_TIMESTAMP,
    DocumentStore,
    StoreConnectionError,
    split_path,
    strip_nulls,
    validate_update_paths,
)

logger = logging.getLogger(__name__)

# Wire form of the server timestamp sentinel
SERVER_VALUE_WIRE = {".sv": "timestamp"}

# Each op is [key index, field or null, nested segments, value]
UPDATE_SCRIPT = """
local t = redis.call('TIME')
local now_ms = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)

local function resolve(v)
    if type(v) == 'table' then
        if v['.sv'] == 'timestamp' then
            return now_ms
        end
        for k, child in pairs(v) do
            v[k] = resolve(child)
        end
    end
    return v
end

local ops = cjson.decode(ARGV[1])
for _, op in ipairs(ops) do
    local hash = KEYS[op[1]]
    local field = op[2]
    local rest = op[3]
    local value = resolve(op[4])

    if field == cjson.null then
        redis.call('DEL', hash)
        if type(value) == 'table' then
            for k, doc in pairs(value) do
                redis.call('HSET', hash, k, cjson.encode(doc))
            end
        end
    elseif #rest == 0 then
        if value == cjson.null then
            redis.call('HDEL', hash, field)
        else
            redis.call('HSET', hash, field, cjson.encode(value))
        end
    else
        local raw = redis.call('HGET', hash, field)
        local doc = {}
        if raw then
            doc = cjson.decode(raw)
        end
        local node = doc
        for i = 1, #rest - 1 do
            local seg = rest[i]
            if type(node[seg]) ~= 'table' then
                node[seg] = {}
            end
            node = node[seg]
        end
        if value == cjson.null then
            node[rest[#rest]] = nil
        else
            node[rest[#rest]] = value
        end
        if next(doc) == nil then
            redis.call('HDEL', hash, field)
        else
            redis.call('HSET', hash, field, cjson.encode(doc))
        end
    end
end
return #ops
"""


def _encode_default(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return SERVER_VALUE_WIRE
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RedisDocumentStore(DocumentStore):
    """Document store on Redis hashes."""

    def __init__(self, redis_url: Optional[str] = None, key_prefix: Optional[str] = None):
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL (defaults to settings)
            key_prefix: Prefix for collection hash keys (defaults to settings)
        """
        self.redis_url = redis_url or settings.document_store_url
        self.key_prefix = key_prefix or settings.redis_key_prefix
        self._redis: Optional[redis.Redis] = None
        self._update_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._update_script = self._redis.register_script(UPDATE_SCRIPT)
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._update_script = None

    def _hash_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}"

    async def get(self, path: str) -> Any:
        segments = split_path(path)
        try:
            redis_client = await self._get_redis()
            hash_key = self._hash_key(segments[0])

            if len(segments) == 1:
                raw_docs = await redis_client.hgetall(hash_key)
                if not raw_docs:
                    return None
                return {key: json.loads(raw) for key, raw in raw_docs.items()}

            raw = await redis_client.hget(hash_key, segments[1])
        except (RedisError, OSError) as e:
            metrics.record_store_error("get")
            logger.error(f"Redis read failed for {path}: {e}")
            raise StoreConnectionError(
                f"Failed to read {path}", operation="get", path=path, original_error=e
            ) from e

        if raw is None:
            return None
        node = json.loads(raw)
        for segment in segments[2:]:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    async def set(self, path: str, value: Any) -> None:
        await self.update({path: value})

    async def update(self, updates: Mapping[str, Any]) -> None:
        if not updates:
            return
        paths = list(updates.keys())
        split = validate_update_paths(paths)

        hash_keys: list[str] = []
        ops = []
        for segments, path in zip(split, paths):
            hash_key = self._hash_key(segments[0])
            if hash_key not in hash_keys:
                hash_keys.append(hash_key)
            field = segments[1] if len(segments) > 1 else None
            ops.append([
                hash_keys.index(hash_key) + 1,
                field,
                segments[2:],
                strip_nulls(updates[path]),
            ])

        try:
            await self._get_redis()
            await self._update_script(
                keys=hash_keys,
                args=[json.dumps(ops, default=_encode_default)],
            )
        except (RedisError, OSError) as e:
            metrics.record_store_error("update")
            logger.error(f"Redis multi-path update failed ({len(paths)} paths): {e}")
            raise StoreConnectionError(
                "Failed to apply update", operation="update", path=paths[0], original_error=e
            ) from e

        logger.debug(f"Applied atomic update across {len(paths)} path(s)")

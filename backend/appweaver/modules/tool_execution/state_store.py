"""
Shared State Store - Redis-backed ephemeral state for tool batches

Key families (all JSON, all with a TTL so abandoned batches expire):
- streaming_tools:{execution_id}:state                    batch metadata
- streaming_tools:{execution_id}:tool_{index}_completed   completion signal

Redis failures never propagate: reads degrade to "absent" and writes to
False, and callers fall back to the durable execution log.
"""

import json
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from appweaver.core.config import settings
from appweaver.core.logging_config import logger
from appweaver.core.redis_client import create_redis
from appweaver.modules.tool_execution.records import CompletionRecord


class SharedStateStore:
    """Key/value store with TTL visible to the coordinator and every worker"""

    KEY_PREFIX = "streaming_tools"

    def __init__(self, redis: Redis, default_ttl: Optional[int] = None):
        self._redis = redis
        self.default_ttl = default_ttl or settings.TOOL_STATE_TTL

    @classmethod
    def from_settings(cls) -> "SharedStateStore":
        return cls(create_redis(settings.redis_state_url))

    async def close(self):
        await self._redis.aclose()

    # ========== Keys ==========

    @classmethod
    def state_key(cls, execution_id: str) -> str:
        return f"{cls.KEY_PREFIX}:{execution_id}:state"

    @classmethod
    def tool_key(cls, execution_id: str, tool_index: int) -> str:
        return f"{cls.KEY_PREFIX}:{execution_id}:tool_{tool_index}_completed"

    # ========== Primitive operations ==========

    async def write(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl or self.default_ttl)
            return True
        except Exception as e:
            logger.warning(f"[SharedState] Write failed for {key}: {e}")
            return False

    async def write_if_absent(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """Atomic SET NX; True only for the caller that created the key"""
        try:
            created = await self._redis.set(key, json.dumps(value), ex=ttl or self.default_ttl, nx=True)
            return bool(created)
        except Exception as e:
            logger.warning(f"[SharedState] Conditional write failed for {key}: {e}")
            return False

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._redis.get(key)
        except Exception as e:
            logger.warning(f"[SharedState] Read failed for {key}: {e}")
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except (TypeError, ValueError):
            logger.warning(f"[SharedState] Discarding unparseable value at {key}")
            return None

    async def exists(self, key: str) -> bool:
        try:
            return await self._redis.exists(key) > 0
        except Exception as e:
            logger.warning(f"[SharedState] Exists check failed for {key}: {e}")
            return False

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except Exception as e:
            logger.warning(f"[SharedState] Delete failed for {len(keys)} keys: {e}")
            return 0

    # ========== Batch state ==========

    async def init_execution_state(
        self,
        execution_id: str,
        tool_count: int,
        message_id: str,
        app_id: Optional[str],
        started_at: str,
    ) -> bool:
        state = {
            "tool_count": tool_count,
            "started_at": started_at,
            "message_id": message_id,
            "app_id": app_id,
        }
        return await self.write(self.state_key(execution_id), state)

    async def get_execution_state(self, execution_id: str) -> Optional[Dict[str, Any]]:
        return await self.read(self.state_key(execution_id))

    # ========== Completion signals ==========

    async def write_completion(
        self,
        execution_id: str,
        tool_index: int,
        record: CompletionRecord,
        overwrite: bool = False,
    ) -> bool:
        """
        Write a tool's completion signal.

        Without ``overwrite`` the signal is written once (SET NX) and a later
        write for the same tool returns False.
        """
        key = self.tool_key(execution_id, tool_index)
        if overwrite:
            success = await self.write(key, record.to_dict())
        else:
            success = await self.write_if_absent(key, record.to_dict())
        logger.debug(f"[SharedState] Completion signal for tool {tool_index}: {'SUCCESS' if success else 'FAILED'} ({key})")
        return success

    async def read_completion(self, execution_id: str, tool_index: int) -> Optional[CompletionRecord]:
        data = await self.read(self.tool_key(execution_id, tool_index))
        if not data:
            return None
        record = CompletionRecord.from_dict(data)
        return record if record.is_terminal else None

    async def clear_execution(self, execution_id: str, tool_count: int) -> int:
        keys = [self.state_key(execution_id)]
        keys.extend(self.tool_key(execution_id, index) for index in range(tool_count))
        return await self.delete(*keys)

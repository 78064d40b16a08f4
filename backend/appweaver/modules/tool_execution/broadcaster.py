"""
Progress Broadcaster - Redis pub/sub fan-out of batch progress

Channels:
- app_{app_id}_chat           human-readable progress lines for the app's chat
- chat_progress_{message_id}  per-tool status updates for the owning message
"""

import json
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from appweaver.core.config import settings
from appweaver.core.logging_config import logger
from appweaver.core.redis_client import create_redis
from appweaver.modules.tool_execution.records import utc_now_iso


def app_channel(app_id: str) -> str:
    return f"app_{app_id}_chat"


def message_channel(message_id: str) -> str:
    return f"chat_progress_{message_id}"


class ProgressBroadcaster:
    """Best-effort publisher; a failed publish is logged and ignored"""

    def __init__(self, redis: Redis):
        self._redis = redis

    @classmethod
    def from_settings(cls) -> "ProgressBroadcaster":
        return cls(create_redis(settings.REDIS_URL))

    async def close(self):
        await self._redis.aclose()

    async def _publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        try:
            await self._redis.publish(channel, json.dumps(payload, default=str))
            return True
        except Exception as e:
            logger.warning(f"[Broadcaster] Publish to {channel} failed: {e}")
            return False

    async def progress(self, app_id: Optional[str], message_id: Optional[str], text: str) -> bool:
        if not app_id:
            return False
        return await self._publish(app_channel(app_id), {
            "action": "progress",
            "message_id": message_id,
            "text": text,
            "timestamp": utc_now_iso(),
        })

    async def tool_status(
        self,
        message_id: str,
        execution_id: str,
        tool_index: int,
        status: str,
        error: Optional[str] = None,
    ) -> bool:
        payload = {
            "action": "tool_status_update",
            "message_id": message_id,
            "execution_id": execution_id,
            "tool_index": tool_index,
            "status": status,
            "timestamp": utc_now_iso(),
        }
        if error:
            payload["error"] = error
        return await self._publish(message_channel(message_id), payload)

"""
Tool batch endpoints - read access to a message's tool batches and a live
relay of its per-tool status updates
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from redis.asyncio import Redis
from typing import AsyncGenerator
import json

from appweaver.core.exceptions import BatchNotFoundError
from appweaver.core.logging_config import logger
from appweaver.core.redis_client import RedisClient, get_redis
from appweaver.modules.tool_execution.broadcaster import message_channel
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog
from appweaver.schemas.tool_batch import ToolBatchListResponse, ToolBatchResponse

router = APIRouter(prefix="/messages", tags=["Tool Batches"])


def get_execution_log() -> DurableExecutionLog:
    return DurableExecutionLog()


@router.get("/{message_id}/tool-batches", response_model=ToolBatchListResponse)
async def list_tool_batches(
    message_id: str,
    execution_log: DurableExecutionLog = Depends(get_execution_log)
):
    """All tool batches of a message, oldest first"""
    batches = await execution_log.list_batches(message_id)
    return ToolBatchListResponse(
        message_id=message_id,
        batches=[ToolBatchResponse(**batch) for batch in batches],
        total=len(batches),
    )


@router.get("/{message_id}/tool-batches/{execution_id}", response_model=ToolBatchResponse)
async def get_tool_batch(
    message_id: str,
    execution_id: str,
    execution_log: DurableExecutionLog = Depends(get_execution_log)
):
    batch = await execution_log.get_batch(message_id, execution_id)
    if batch is None:
        raise BatchNotFoundError(execution_id, message_id)
    return ToolBatchResponse(**batch)


async def progress_events(redis: Redis, message_id: str) -> AsyncGenerator[str, None]:
    """Relay chat_progress_{message_id} as Server-Sent Events"""
    channel = message_channel(message_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    logger.info(f"[ProgressRelay] Subscribed to {channel}")
    try:
        yield f"data: {json.dumps({'type': 'subscribed', 'message_id': message_id})}\n\n"
        async for event in pubsub.listen():
            if event.get("type") != "message":
                continue
            yield f"data: {event['data']}\n\n"
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        logger.info(f"[ProgressRelay] Unsubscribed from {channel}")


@router.get("/{message_id}/progress")
async def stream_progress(
    message_id: str,
    redis: RedisClient = Depends(get_redis)
):
    """
    Live tool status updates for a message
    Returns Server-Sent Events (SSE) stream
    """
    if redis.redis is None:
        raise HTTPException(status_code=503, detail="Progress relay unavailable")

    return StreamingResponse(
        progress_events(redis.redis, message_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )

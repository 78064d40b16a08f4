"""
Durable Execution Log - tool batch history stored on the owning chat message

Record layout (``ChatMessage.conversation_flow``, appended to, never truncated):

    [
      {"type": "message", ...},
      {"type": "tools", "execution_id": "...", "status": "streaming",
       "expanded": true, "started_at": "...", "completed_at": null,
       "deployment_triggered_at": null,
       "tools": [{"index": 0, "id": "toolu_..", "name": "os-write",
                  "args": {...}, "file_path": "src/App.tsx",
                  "status": "pending", "started_at": null,
                  "completed_at": null, "error": null, "result": null}]},
      ...
    ]

Concurrency:
- Every mutation is read-modify-write with a compare-and-swap on
  ``lock_version``. Row locks are not used; they deadlocked under many
  concurrent tool workers.
- A lost CAS is retried with exponential backoff (base * 2^attempt, capped).
  Exhausting the retries is logged and reported, never raised; the
  completion watcher's timeout path resolves whatever was left stale.
- Terminal tool statuses are never overwritten.
"""

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appweaver.core.config import settings
from appweaver.core.database import get_session_local
from appweaver.core.exceptions import MessageNotFoundError, WriteConflictError
from appweaver.core.logging_config import logger
from appweaver.models.chat_message import ChatMessage
from appweaver.modules.tool_execution.records import (
    BatchStatus,
    ToolCallRequest,
    ToolStatus,
    UpdateOutcome,
    is_terminal_status,
    utc_now_iso,
)

T = TypeVar("T")

# A mutator edits the flow in place and returns (value, changed)
Mutator = Callable[[List[Dict[str, Any]]], Tuple[T, bool]]


@dataclass
class MessageSnapshot:
    """Consistent read of the owning message's log record"""
    message_id: str
    app_id: str
    flow: List[Dict[str, Any]]
    lock_version: int


# ============================================
# Pure helpers over the flow structure
# ============================================

def find_batch(flow: List[Dict[str, Any]], execution_id: str) -> Optional[Dict[str, Any]]:
    """Locate a tool batch, searching from the most recent entry backwards"""
    for item in reversed(flow or []):
        if isinstance(item, dict) and item.get("type") == "tools" and item.get("execution_id") == execution_id:
            return item
    return None


def find_tool(batch: Optional[Dict[str, Any]], tool_index: int) -> Optional[Dict[str, Any]]:
    if not batch:
        return None
    tools = batch.get("tools") or []
    if 0 <= tool_index < len(tools):
        return tools[tool_index]
    return None


def build_batch_entry(execution_id: str, tool_calls: List[ToolCallRequest], started_at: str) -> Dict[str, Any]:
    return {
        "type": "tools",
        "execution_id": execution_id,
        "status": BatchStatus.STREAMING.value,
        "expanded": True,
        "started_at": started_at,
        "completed_at": None,
        "deployment_triggered_at": None,
        "tools": [
            {
                "index": index,
                "id": call.id,
                "name": call.name,
                "args": call.arguments,
                "file_path": call.file_path,
                "status": ToolStatus.PENDING.value,
                "started_at": None,
                "completed_at": None,
                "error": None,
                "result": None,
            }
            for index, call in enumerate(tool_calls)
        ],
    }


def apply_tool_update(
    tool: Dict[str, Any],
    status: str,
    result: Optional[str] = None,
    error: Optional[str] = None,
    now: Optional[str] = None,
) -> bool:
    """
    Apply a status transition to one tool record in place.

    Returns False when the record is already terminal and the update was
    dropped (at most one terminal transition per tool).
    """
    if is_terminal_status(tool.get("status")):
        return False

    now = now or utc_now_iso()
    tool["status"] = status
    if status == ToolStatus.RUNNING.value and not tool.get("started_at"):
        tool["started_at"] = now
    if is_terminal_status(status):
        tool["completed_at"] = now
        if status == ToolStatus.COMPLETE.value and result is not None:
            tool["result"] = result
        if status == ToolStatus.ERROR.value:
            tool["error"] = error or "Tool execution failed"
    return True


class DurableExecutionLog:
    """Optimistically-locked tool batch log on ``ChatMessage.conversation_flow``"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.max_retries = max_retries if max_retries is not None else settings.EXECUTION_LOG_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.EXECUTION_LOG_RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else settings.EXECUTION_LOG_RETRY_MAX_DELAY

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    # ========== Reads ==========

    async def load(self, message_id: str) -> Optional[MessageSnapshot]:
        """Fresh read of the record, bypassing any session identity map"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    ChatMessage.id,
                    ChatMessage.app_id,
                    ChatMessage.conversation_flow,
                    ChatMessage.lock_version,
                ).where(ChatMessage.id == message_id)
            )
            row = result.one_or_none()

        if row is None:
            return None
        return MessageSnapshot(
            message_id=str(row.id),
            app_id=str(row.app_id),
            flow=list(row.conversation_flow or []),
            lock_version=row.lock_version or 0,
        )

    async def get_batch(self, message_id: str, execution_id: str) -> Optional[Dict[str, Any]]:
        """Copy of one batch entry, or None when absent/unreadable"""
        try:
            snapshot = await self.load(message_id)
        except SQLAlchemyError as e:
            logger.warning(f"[ExecutionLog] Could not read message {message_id}: {e}")
            return None
        if snapshot is None:
            return None
        batch = find_batch(snapshot.flow, execution_id)
        return copy.deepcopy(batch) if batch else None

    async def list_batches(self, message_id: str) -> List[Dict[str, Any]]:
        """All tool batches of a message, oldest first"""
        snapshot = await self.load(message_id)
        if snapshot is None:
            raise MessageNotFoundError(message_id)
        return [copy.deepcopy(item) for item in snapshot.flow if isinstance(item, dict) and item.get("type") == "tools"]

    async def get_app_id(self, message_id: str) -> Optional[str]:
        try:
            snapshot = await self.load(message_id)
        except SQLAlchemyError as e:
            logger.warning(f"[ExecutionLog] Could not read message {message_id}: {e}")
            return None
        return snapshot.app_id if snapshot else None

    # ========== Writes ==========

    async def append_batch(self, message_id: str, execution_id: str, tool_calls: List[ToolCallRequest]) -> bool:
        """Append a new batch entry; earlier batches are left untouched"""
        entry = build_batch_entry(execution_id, tool_calls, utc_now_iso())

        def mutator(flow):
            flow.append(entry)
            return True, True

        try:
            return await self._mutate(message_id, mutator, f"append batch {execution_id}")
        except MessageNotFoundError:
            logger.error(f"[ExecutionLog] Message {message_id} not found, cannot record batch {execution_id}")
            return False
        except (WriteConflictError, SQLAlchemyError) as e:
            logger.log_error_with_context(e, "ExecutionLog.append_batch", execution_id=execution_id)
            return False

    async def update_tool(
        self,
        message_id: str,
        execution_id: str,
        tool_index: int,
        status: str,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> UpdateOutcome:
        """Transition one tool's status; terminal statuses are never overwritten"""
        status = ToolStatus(status).value

        def mutator(flow):
            batch = find_batch(flow, execution_id)
            tool = find_tool(batch, tool_index)
            if tool is None:
                return UpdateOutcome.NOT_FOUND, False

            current = tool.get("status")
            if not apply_tool_update(tool, status, result=result, error=error):
                if is_terminal_status(status):
                    logger.info(
                        f"[ExecutionLog] Tool {tool_index} already terminal '{current}', "
                        f"dropping duplicate terminal update '{status}'"
                    )
                else:
                    logger.warning(
                        f"[ExecutionLog] Race detected: tool {tool_index} already in final state "
                        f"'{current}', dropping late update to '{status}'"
                    )
                return UpdateOutcome.SKIPPED_TERMINAL, False
            return UpdateOutcome.APPLIED, True

        try:
            outcome = await self._mutate(message_id, mutator, f"tool {tool_index} -> {status}")
        except MessageNotFoundError:
            outcome = UpdateOutcome.NOT_FOUND
        except WriteConflictError as e:
            logger.error(
                f"[ExecutionLog] Failed to update tool {tool_index} to '{status}' after "
                f"{self.max_retries} attempts: {e.message}"
            )
            return UpdateOutcome.ABANDONED
        except SQLAlchemyError as e:
            logger.log_error_with_context(e, "ExecutionLog.update_tool", execution_id=execution_id, tool_index=tool_index)
            return UpdateOutcome.ABANDONED

        if outcome == UpdateOutcome.NOT_FOUND:
            logger.warning(f"[ExecutionLog] Could not find tool {tool_index} in execution {execution_id}")
        elif outcome == UpdateOutcome.APPLIED:
            logger.info(f"[ExecutionLog] Updated tool {tool_index} to status '{status}'")
        return outcome

    async def mark_batch_completed(self, message_id: str, execution_id: str) -> bool:
        """Mark the batch completed; True only for the call that made the transition"""

        def mutator(flow):
            batch = find_batch(flow, execution_id)
            if batch is None or batch.get("status") == BatchStatus.COMPLETED.value:
                return False, False
            batch["status"] = BatchStatus.COMPLETED.value
            batch["expanded"] = False
            batch["completed_at"] = utc_now_iso()
            return True, True

        try:
            return await self._mutate(message_id, mutator, f"complete batch {execution_id}")
        except (MessageNotFoundError, WriteConflictError, SQLAlchemyError) as e:
            logger.warning(f"[ExecutionLog] Could not mark batch {execution_id} completed: {e}")
            return False

    async def claim_deployment(self, message_id: str, execution_id: str) -> bool:
        """Check-and-set of the batch's deployment flag; exactly one caller wins"""

        def mutator(flow):
            batch = find_batch(flow, execution_id)
            if batch is None or batch.get("deployment_triggered_at"):
                return False, False
            batch["deployment_triggered_at"] = utc_now_iso()
            return True, True

        try:
            return await self._mutate(message_id, mutator, f"claim deployment {execution_id}")
        except (MessageNotFoundError, WriteConflictError, SQLAlchemyError) as e:
            logger.warning(f"[ExecutionLog] Could not claim deployment for {execution_id}: {e}")
            return False

    # ========== Optimistic concurrency ==========

    async def _compare_and_swap(self, message_id: str, expected_version: int, flow: List[Dict[str, Any]]) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(ChatMessage)
                .where(ChatMessage.id == message_id, ChatMessage.lock_version == expected_version)
                .values(
                    conversation_flow=flow,
                    lock_version=expected_version + 1,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            raise WriteConflictError(message_id, expected_version)

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def _mutate(self, message_id: str, mutator: Mutator, description: str) -> T:
        """
        Read, mutate a private copy, compare-and-swap; retry on conflict.

        Raises MessageNotFoundError, or WriteConflictError once retries are
        exhausted.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                snapshot = await self.load(message_id)
                if snapshot is None:
                    raise MessageNotFoundError(message_id)

                flow = copy.deepcopy(snapshot.flow)
                value, changed = mutator(flow)
                if changed:
                    await self._compare_and_swap(message_id, snapshot.lock_version, flow)
                return value
            except (WriteConflictError, OperationalError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"[ExecutionLog] Database conflict ({type(e).__name__}) on {description}, "
                    f"retry {attempt}/{self.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        if isinstance(last_error, WriteConflictError):
            raise last_error
        raise WriteConflictError(message_id, -1) from last_error

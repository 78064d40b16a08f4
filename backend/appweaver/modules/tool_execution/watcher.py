"""
Completion Watcher - waits for every tool of a batch to reach a terminal state

Completion is read from two sources: the shared state store's completion
signal first, then the durable execution log when the signal is missing
(expired, evicted or never written). The log batch is loaded at most once per
poll cycle.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from appweaver.core.config import settings
from appweaver.core.exceptions import ToolTimeoutError
from appweaver.core.logging_config import logger
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog, find_tool
from appweaver.modules.tool_execution.records import CompletionRecord, Failure, ToolStatus, is_terminal_status
from appweaver.modules.tool_execution.state_store import SharedStateStore

if TYPE_CHECKING:
    from appweaver.modules.tool_execution.coordinator import CoordinatorAPI


def record_from_log(tool: Optional[Dict[str, Any]]) -> Optional[CompletionRecord]:
    """Terminal CompletionRecord from a log tool entry, else None"""
    if not tool or not is_terminal_status(tool.get("status")):
        return None
    return CompletionRecord(
        status=tool["status"],
        result=tool.get("result"),
        error=tool.get("error"),
        completed_at=tool.get("completed_at"),
    )


async def collect_completions(
    state_store: SharedStateStore,
    execution_log: DurableExecutionLog,
    message_id: str,
    execution_id: str,
    indices: Iterable[int],
) -> Dict[int, CompletionRecord]:
    """Terminal records for ``indices``, cache first with a single log fallback read"""
    completed: Dict[int, CompletionRecord] = {}
    batch = None
    batch_loaded = False

    for index in indices:
        record = await state_store.read_completion(execution_id, index)
        if record is None:
            if not batch_loaded:
                batch = await execution_log.get_batch(message_id, execution_id)
                batch_loaded = True
            record = record_from_log(find_tool(batch, index))
        if record is not None:
            completed[index] = record

    return completed


class CompletionWatcher:
    """Cooperative poll loop with an overall deadline"""

    PROGRESS_LOG_EVERY = 10

    def __init__(
        self,
        api: "CoordinatorAPI",
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.api = api
        self.poll_interval = poll_interval if poll_interval is not None else settings.TOOL_POLL_INTERVAL
        self.timeout = timeout if timeout is not None else settings.TOOL_COMPLETION_TIMEOUT

    async def _collect(self, message_id: str, execution_id: str, completed: Dict[int, CompletionRecord],
                       tool_count: int) -> Dict[int, CompletionRecord]:
        """Add records for indices not yet in ``completed``; recorded ones are never re-read"""
        pending = [index for index in range(tool_count) if index not in completed]
        if pending:
            completed.update(await collect_completions(
                self.api.state_store, self.api.execution_log, message_id, execution_id, pending
            ))
        return completed

    async def wait(self, message_id: str, execution_id: str, tool_count: int) -> Dict[int, CompletionRecord]:
        """
        Block until all ``tool_count`` indices are terminal or the deadline passes.

        Always returns a terminal record for every index; indices still open at
        the deadline are forced to ``error`` through the regular completion path.
        """
        started = time.monotonic()
        deadline = started + self.timeout
        completed: Dict[int, CompletionRecord] = {}
        checks = 0

        while True:
            await self._collect(message_id, execution_id, completed, tool_count)
            if len(completed) >= tool_count:
                logger.log_batch_event(
                    execution_id, "all tools completed",
                    tool_count=tool_count,
                    duration_ms=(time.monotonic() - started) * 1000,
                )
                return completed

            if time.monotonic() >= deadline:
                break

            checks += 1
            if checks % self.PROGRESS_LOG_EVERY == 0:
                logger.info(
                    f"[Watcher] Waiting for tools in {execution_id}: "
                    f"{len(completed)}/{tool_count} completed after {time.monotonic() - started:.1f}s"
                )
            await asyncio.sleep(self.poll_interval)

        return await self._force_timeouts(message_id, execution_id, tool_count, completed)

    async def _force_timeouts(
        self,
        message_id: str,
        execution_id: str,
        tool_count: int,
        completed: Dict[int, CompletionRecord],
    ) -> Dict[int, CompletionRecord]:
        pending = [index for index in range(tool_count) if index not in completed]
        logger.warning(
            f"[Watcher] Timeout after {self.timeout}s waiting for {execution_id}, "
            f"forcing {len(pending)} tools to error: {pending}"
        )

        for index in pending:
            timeout_error = ToolTimeoutError(index, self.timeout)
            await self.api.report_completion(
                message_id, execution_id, index, Failure(timeout_error.message), finalize=False
            )

        # A worker that finished while the timeout was being forced keeps its result
        await self._collect(message_id, execution_id, completed, tool_count)
        for index in pending:
            if index not in completed:
                completed[index] = CompletionRecord(
                    status=ToolStatus.ERROR.value,
                    error=ToolTimeoutError(index, self.timeout).message,
                )
        return completed

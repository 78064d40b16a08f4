"""
Parallel Tool Coordinator

Runs a batch of tool calls concurrently on Celery workers and returns one
result per call, in request order.

Two entry points:
- ``CoordinatorAPI``: stateless operations keyed by (message_id, execution_id).
  Workers, dispatch failures and timeouts all report completions through
  ``report_completion``.
- ``BatchSession``: the orchestrating path that creates a batch, dispatches
  it, waits for it and materializes the results.

Flow:
1. BatchSession writes cache state and appends the batch to the execution log
2. WorkerDispatcher marks each tool queued and schedules a worker unit
3. Each worker marks itself running, runs the tool, reports its outcome
   (execution log first, then the completion signal in the shared state store)
4. CompletionWatcher polls until every index is terminal or the deadline passes
5. BatchFinalizer completes the batch, deploys on full success, cleans up
6. Result blocks are materialized in request order
"""

import secrets
from typing import Any, Dict, List, Optional

from appweaver.core.logging_config import logger, set_execution_id, set_message_id
from appweaver.modules.tool_execution.broadcaster import ProgressBroadcaster
from appweaver.modules.tool_execution.dispatcher import Enqueue, WorkerDispatcher
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog
from appweaver.modules.tool_execution.finalizer import BatchFinalizer, DeployTrigger
from appweaver.modules.tool_execution.materializer import materialize
from appweaver.modules.tool_execution.records import (
    CompletionRecord,
    ToolOutcome,
    ToolResultBlock,
    ToolStatus,
    UpdateOutcome,
    normalize_tool_calls,
    utc_now_iso,
)
from appweaver.modules.tool_execution.state_store import SharedStateStore
from appweaver.modules.tool_execution.watcher import CompletionWatcher


class CoordinatorAPI:
    """Stateless coordinator operations shared by the session and the workers"""

    def __init__(
        self,
        state_store: SharedStateStore,
        execution_log: DurableExecutionLog,
        broadcaster: Optional[ProgressBroadcaster] = None,
        deploy_trigger: Optional[DeployTrigger] = None,
    ):
        self.state_store = state_store
        self.execution_log = execution_log
        self.broadcaster = broadcaster
        self.finalizer = BatchFinalizer(state_store, execution_log, broadcaster, deploy_trigger)

    @classmethod
    def from_settings(cls, deploy_trigger: Optional[DeployTrigger] = None) -> "CoordinatorAPI":
        """Fresh clients for the current event loop (one per Celery task)"""
        return cls(
            SharedStateStore.from_settings(),
            DurableExecutionLog(),
            ProgressBroadcaster.from_settings(),
            deploy_trigger,
        )

    async def close(self):
        await self.state_store.close()
        if self.broadcaster:
            await self.broadcaster.close()

    async def _broadcast_tool(self, message_id: str, execution_id: str, index: int, status: str,
                              error: Optional[str] = None):
        if self.broadcaster:
            await self.broadcaster.tool_status(message_id, execution_id, index, status, error=error)

    async def mark_running(self, message_id: str, execution_id: str, index: int) -> UpdateOutcome:
        outcome = await self.execution_log.update_tool(message_id, execution_id, index, ToolStatus.RUNNING.value)
        if outcome == UpdateOutcome.APPLIED:
            await self._broadcast_tool(message_id, execution_id, index, ToolStatus.RUNNING.value)
        return outcome

    async def report_completion(
        self,
        message_id: str,
        execution_id: str,
        index: int,
        outcome: ToolOutcome,
        finalize: bool = True,
    ) -> UpdateOutcome:
        """
        Record a tool's terminal outcome.

        The execution log is written first; the completion signal follows
        unless the log dropped the write because the tool was already
        terminal. When the log write did not apply, an existing signal wins
        and the report is dropped. With ``finalize`` set, the batch is
        finalized once this completion makes it complete.
        """
        record = CompletionRecord.from_outcome(outcome)
        update = await self.execution_log.update_tool(
            message_id, execution_id, index, record.status,
            result=record.result, error=record.error,
        )

        if update == UpdateOutcome.SKIPPED_TERMINAL:
            return update

        # The signal follows the log; without an applied log write it is written once
        applied = update == UpdateOutcome.APPLIED
        if not await self.state_store.write_completion(execution_id, index, record, overwrite=applied):
            if not applied and await self.state_store.read_completion(execution_id, index) is not None:
                logger.info(f"[Coordinator] Tool {index} in {execution_id} already signalled, dropping {record.status}")
                return UpdateOutcome.SKIPPED_TERMINAL
            logger.warning(f"[Coordinator] Completion signal for tool {index} not written, log remains authoritative")

        logger.log_tool_event(execution_id, index, record.status, log_outcome=update.value)
        await self._broadcast_tool(message_id, execution_id, index, record.status, error=record.error)

        if finalize and await self.all_tools_completed(message_id, execution_id):
            logger.log_batch_event(execution_id, f"completed by tool {index}")
            await self.finalize(message_id, execution_id)

        return update

    async def all_tools_completed(self, message_id: str, execution_id: str) -> bool:
        return await self.finalizer.all_tools_completed(message_id, execution_id)

    async def all_tools_successful(self, message_id: str, execution_id: str) -> bool:
        return await self.finalizer.all_tools_successful(message_id, execution_id)

    async def finalize(self, message_id: str, execution_id: str) -> bool:
        return await self.finalizer.finalize(message_id, execution_id)

    async def cleanup(self, message_id: str, execution_id: str) -> int:
        return await self.finalizer.cleanup(message_id, execution_id)


class BatchSession:
    """
    Executes one batch of tool calls for a message and waits for the results.

    Usage:
        session = BatchSession(message_id, app_id, iteration_count, api=api)
        results = await session.execute_tools_in_parallel(tool_calls)
        blocks = [result.to_anthropic() for result in results]
    """

    def __init__(
        self,
        message_id: str,
        app_id: Optional[str],
        iteration_count: int = 0,
        api: Optional[CoordinatorAPI] = None,
        enqueue: Optional[Enqueue] = None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.message_id = str(message_id)
        self.app_id = str(app_id) if app_id else None
        self.iteration_count = iteration_count
        self._owns_api = api is None
        self.api = api or CoordinatorAPI.from_settings()
        self.dispatcher = WorkerDispatcher(self.api, enqueue=enqueue)
        self.watcher = CompletionWatcher(self.api, poll_interval=poll_interval, timeout=timeout)
        self.execution_id: Optional[str] = None

    def generate_execution_id(self) -> str:
        return f"{self.message_id}_{secrets.token_hex(8)}"

    async def execute_tools_in_parallel(self, tool_calls: List[Dict[str, Any]]) -> List[ToolResultBlock]:
        if not tool_calls:
            return []

        requests = normalize_tool_calls(tool_calls)
        self.execution_id = execution_id = self.generate_execution_id()
        set_message_id(self.message_id)
        set_execution_id(execution_id)

        logger.log_batch_event(
            execution_id, f"starting {len(requests)} tools",
            tool_names=[call.name for call in requests],
            iteration_count=self.iteration_count,
        )

        try:
            await self.api.state_store.init_execution_state(
                execution_id, len(requests), self.message_id, self.app_id, utc_now_iso()
            )
            if not await self.api.execution_log.append_batch(self.message_id, execution_id, requests):
                logger.warning(f"[Coordinator] Batch {execution_id} not recorded in the execution log")

            if self.api.broadcaster:
                await self.api.broadcaster.progress(
                    self.app_id, self.message_id, f"Executing {len(requests)} tools in parallel..."
                )

            await self.dispatcher.dispatch(self.message_id, execution_id, requests, self.iteration_count)
            completed = await self.watcher.wait(self.message_id, execution_id, len(requests))
            await self.api.finalize(self.message_id, execution_id)

            return materialize(requests, completed)
        finally:
            if self._owns_api:
                await self.api.close()

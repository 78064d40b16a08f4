"""
Celery tasks for parallel tool execution

Worker flow:
1. Mark the tool running (dropped if the batch already gave up on it)
2. Run the tool through ToolExecutor, which yields Success or Failure
3. Report the outcome through CoordinatorAPI.report_completion, which
   finalizes the batch when this was its last open tool
"""
import asyncio
from typing import Any, Dict, Optional

from celery import Task

from appweaver.core.celery_app import celery_app
from appweaver.core.config import settings
from appweaver.core.database import close_db
from appweaver.core.exceptions import InvalidToolCallError
from appweaver.core.logging_config import logger, set_execution_id, set_message_id
from appweaver.modules.tool_execution.coordinator import CoordinatorAPI
from appweaver.modules.tool_execution.executor import ToolExecutor
from appweaver.modules.tool_execution.records import Failure, ToolCallRequest, UpdateOutcome


class ToolTask(Task):
    """Celery task with its own event loop per invocation"""
    abstract = True

    def run_async(self, coro):
        """Run async coroutine in sync context"""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()


@celery_app.task(
    bind=True,
    base=ToolTask,
    acks_late=True,
    time_limit=settings.CELERY_TASK_TIME_LIMIT,
    soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT
)
def execute_tool(
    self,
    message_id: str,
    execution_id: str,
    tool_index: int,
    tool_call: Dict[str, Any],
    iteration_count: int = 0
):
    """
    Celery task to execute one tool of a batch

    Args:
        message_id: Owning chat message
        execution_id: Batch the tool belongs to
        tool_index: Position of the tool in the batch
        tool_call: Serialized ToolCallRequest
        iteration_count: Agent loop iteration that produced the batch
    """
    return self.run_async(_async_execute_tool(
        message_id, execution_id, tool_index, tool_call, iteration_count
    ))


async def _async_execute_tool(
    message_id: str,
    execution_id: str,
    tool_index: int,
    tool_call: Dict[str, Any],
    iteration_count: int
) -> Dict[str, Any]:
    api = CoordinatorAPI.from_settings()
    try:
        return await run_tool(api, message_id, execution_id, tool_index, tool_call, iteration_count)
    finally:
        await api.close()
        await close_db()


async def run_tool(
    api: CoordinatorAPI,
    message_id: str,
    execution_id: str,
    tool_index: int,
    tool_call: Dict[str, Any],
    iteration_count: int = 0,
    executor: Optional[ToolExecutor] = None
) -> Dict[str, Any]:
    """Body of the worker unit, independent of Celery"""
    set_message_id(message_id)
    set_execution_id(execution_id)

    running = await api.mark_running(message_id, execution_id, tool_index)
    if running == UpdateOutcome.SKIPPED_TERMINAL:
        logger.info(f"[ToolWorker] Tool {tool_index} in {execution_id} already resolved, not running it")
        return {"tool_index": tool_index, "status": "skipped"}

    try:
        request = ToolCallRequest.from_dict(tool_call, tool_index)
    except InvalidToolCallError as e:
        outcome = Failure(e.message)
    else:
        logger.log_tool_event(
            execution_id, tool_index, "running",
            tool_name=request.name, iteration_count=iteration_count
        )
        if executor is None:
            executor = ToolExecutor(await api.execution_log.get_app_id(message_id))
        try:
            outcome = await executor.execute(request)
        except Exception as e:
            logger.log_error_with_context(e, "ToolWorker.execute", tool_index=tool_index)
            outcome = Failure(str(e))

    await api.report_completion(message_id, execution_id, tool_index, outcome)
    return {"tool_index": tool_index, "status": outcome.status.value}

"""
Worker Dispatcher - schedules one worker unit per tool call

Each tool is marked ``queued`` in the execution log before its unit is
scheduled. Units are staggered (``index * TOOL_DISPATCH_STAGGER`` seconds) so
a burst of workers does not all hit the execution log at once.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from appweaver.core.config import settings
from appweaver.core.exceptions import DispatchFailureError
from appweaver.core.logging_config import logger
from appweaver.modules.tool_execution.records import Failure, ToolCallRequest, ToolStatus

if TYPE_CHECKING:
    from appweaver.modules.tool_execution.coordinator import CoordinatorAPI

# enqueue(message_id, execution_id, tool_index, tool_call, iteration_count, countdown)
Enqueue = Callable[[str, str, int, Dict[str, Any], int, float], Any]


def enqueue_tool_task(
    message_id: str,
    execution_id: str,
    tool_index: int,
    tool_call: Dict[str, Any],
    iteration_count: int,
    countdown: float,
):
    """Default scheduler: the Celery ``execute_tool`` task on the tools queue"""
    from appweaver.modules.tool_execution.tasks import execute_tool

    return execute_tool.apply_async(
        args=[message_id, execution_id, tool_index, tool_call, iteration_count],
        countdown=countdown,
        queue="tools",
    )


class WorkerDispatcher:
    def __init__(self, api: "CoordinatorAPI", enqueue: Optional[Enqueue] = None, stagger: Optional[float] = None):
        self.api = api
        self.enqueue = enqueue or enqueue_tool_task
        self.stagger = stagger if stagger is not None else settings.TOOL_DISPATCH_STAGGER

    async def dispatch(
        self,
        message_id: str,
        execution_id: str,
        tool_calls: List[ToolCallRequest],
        iteration_count: int = 0,
    ) -> int:
        """Schedule every tool call; returns how many units were scheduled"""
        scheduled = 0
        for index, call in enumerate(tool_calls):
            if call.invalid_reason:
                logger.warning(f"[Dispatcher] Tool {index} is malformed: {call.invalid_reason}")
                await self.api.report_completion(
                    message_id, execution_id, index, Failure(call.invalid_reason), finalize=False
                )
                continue

            await self.api.execution_log.update_tool(message_id, execution_id, index, ToolStatus.QUEUED.value)

            countdown = index * self.stagger
            try:
                self.enqueue(message_id, execution_id, index, call.to_dict(), iteration_count, countdown)
            except Exception as e:
                failure = DispatchFailureError(index, str(e))
                logger.error(f"[Dispatcher] Failed to launch tool {index} ({call.name}): {e}")
                await self.api.report_completion(
                    message_id, execution_id, index, Failure(failure.message), finalize=False
                )
                continue

            scheduled += 1
            logger.log_tool_event(execution_id, index, "queued", tool_name=call.name, countdown=countdown)

        return scheduled

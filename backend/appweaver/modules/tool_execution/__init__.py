"""
Parallel tool execution

Usage:
    from appweaver.modules.tool_execution import BatchSession

    session = BatchSession(message_id, app_id, iteration_count)
    results = await session.execute_tools_in_parallel(tool_calls)
"""

from appweaver.modules.tool_execution.coordinator import BatchSession, CoordinatorAPI
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog
from appweaver.modules.tool_execution.materializer import materialize
from appweaver.modules.tool_execution.records import (
    CompletionRecord,
    Failure,
    Success,
    ToolCallRequest,
    ToolResultBlock,
    ToolStatus,
    UpdateOutcome,
)
from appweaver.modules.tool_execution.state_store import SharedStateStore

__all__ = [
    "BatchSession",
    "CoordinatorAPI",
    "DurableExecutionLog",
    "SharedStateStore",
    "materialize",
    "CompletionRecord",
    "Failure",
    "Success",
    "ToolCallRequest",
    "ToolResultBlock",
    "ToolStatus",
    "UpdateOutcome",
]

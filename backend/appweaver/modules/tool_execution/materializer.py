"""
Result Materializer - turns terminal records into tool result blocks

One block per requested tool call, in request order, regardless of the order
in which the tools finished.
"""

from typing import Dict, List, Optional, Tuple

from appweaver.core.logging_config import logger
from appweaver.modules.tool_execution.records import CompletionRecord, ToolCallRequest, ToolResultBlock, ToolStatus


def result_content(call: ToolCallRequest, record: Optional[CompletionRecord]) -> Tuple[str, bool]:
    """(content, is_error) for one tool call"""
    status = record.status if record else None

    if status == ToolStatus.COMPLETE.value:
        return record.result or f"Tool {call.name} completed successfully", False
    if status == ToolStatus.ERROR.value:
        return record.error or "Tool execution failed", True
    return f"Tool {call.name} status unknown", True


def materialize(tool_calls: List[ToolCallRequest], completed: Dict[int, CompletionRecord]) -> List[ToolResultBlock]:
    blocks = []
    for index, call in enumerate(tool_calls):
        content, is_error = result_content(call, completed.get(index))
        blocks.append(ToolResultBlock(tool_call_id=call.id, content=content, is_error=is_error))

    errors = sum(1 for block in blocks if block.is_error)
    logger.debug(f"[Materializer] Built {len(blocks)} tool results ({errors} errors)")
    return blocks

"""
Tool batch schemas - read models over the durable execution log
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

from appweaver.modules.tool_execution.records import BatchStatus, ToolStatus


class ToolRecordResponse(BaseModel):
    """One tool of a batch"""
    index: int
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    file_path: Optional[str] = None
    status: ToolStatus
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    result: Optional[str] = None


class ToolBatchResponse(BaseModel):
    """One tool batch as recorded on its message"""
    execution_id: str
    status: BatchStatus
    expanded: bool = True
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    deployment_triggered_at: Optional[str] = None
    tools: List[ToolRecordResponse] = Field(default_factory=list)


class ToolBatchListResponse(BaseModel):
    """All tool batches of a message, oldest first"""
    message_id: str
    batches: List[ToolBatchResponse]
    total: int

"""
Value types shared by the parallel tool execution components.

Tool outcomes are decided once, at the worker boundary, as either
``Success(content)`` or ``Failure(message)``. Everything downstream (the
execution log, completion signals, result blocks) works from that, so no code
has to sniff the shape of a tool's return value.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import json

from appweaver.core.exceptions import InvalidToolCallError


class ToolStatus(str, Enum):
    """Per-tool state machine: pending -> queued -> running -> (complete | error)"""
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class BatchStatus(str, Enum):
    """Batch lifecycle; becomes COMPLETED exactly once"""
    STREAMING = "streaming"
    COMPLETED = "completed"


class UpdateOutcome(str, Enum):
    """What happened to an execution-log tool update"""
    APPLIED = "applied"
    SKIPPED_TERMINAL = "skipped_terminal"  # anti-regression guard dropped the write
    NOT_FOUND = "not_found"                # message, batch or index missing
    ABANDONED = "abandoned"                # retries exhausted or database failure


def is_terminal_status(status: Optional[str]) -> bool:
    """True for 'complete' and 'error'"""
    return status in (ToolStatus.COMPLETE.value, ToolStatus.ERROR.value)


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


# ============================================
# Tool outcomes
# ============================================

@dataclass(frozen=True)
class Success:
    content: str

    @property
    def status(self) -> ToolStatus:
        return ToolStatus.COMPLETE


@dataclass(frozen=True)
class Failure:
    message: str

    @property
    def status(self) -> ToolStatus:
        return ToolStatus.ERROR


ToolOutcome = Union[Success, Failure]


# ============================================
# Tool call requests
# ============================================

@dataclass
class ToolCallRequest:
    """
    One tool call as requested by the model.

    Accepts both the flat shape ``{"id", "name", "arguments"}`` and the
    OpenAI shape ``{"id", "function": {"name", "arguments"}}``. JSON-string
    arguments are parsed; unparseable arguments become ``{}``.
    """
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    invalid_reason: Optional[str] = None  # set when the raw call could not be interpreted

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "ToolCallRequest":
        if not isinstance(data, dict):
            raise InvalidToolCallError(f"Tool call {index} is not an object: {data!r}")

        function = data.get("function")
        if isinstance(function, dict):
            name = function.get("name")
            raw_args = function.get("arguments")
        else:
            name = data.get("name")
            raw_args = data.get("arguments", data.get("input"))

        if not name:
            raise InvalidToolCallError(f"Tool call {index} has no tool name")

        return cls(
            id=str(data.get("id") or f"tool_{index}"),
            name=str(name),
            arguments=parse_arguments(raw_args),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @property
    def file_path(self) -> Optional[str]:
        return self.arguments.get("file_path")


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Normalise tool arguments to a dict"""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


# ============================================
# Completion records
# ============================================

@dataclass
class CompletionRecord:
    """
    Terminal result for one tool index.

    Serialised as the completion signal in the shared state store and
    rebuilt from the execution log when the signal is missing.
    """
    status: str
    result: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: ToolOutcome) -> "CompletionRecord":
        if isinstance(outcome, Success):
            return cls(status=ToolStatus.COMPLETE.value, result=outcome.content, completed_at=utc_now_iso())
        return cls(status=ToolStatus.ERROR.value, error=outcome.message, completed_at=utc_now_iso())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionRecord":
        return cls(
            status=data.get("status", ""),
            result=data.get("result"),
            error=data.get("error"),
            completed_at=data.get("completed_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "result": self.result,
            "error": self.error,
            "completed_at": self.completed_at,
        }
        return {k: v for k, v in data.items() if v is not None}

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @property
    def succeeded(self) -> bool:
        return self.status == ToolStatus.COMPLETE.value


# ============================================
# Result blocks
# ============================================

@dataclass
class ToolResultBlock:
    """One tool result for the next model turn, correlated by tool call id"""
    tool_call_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"tool_call_id": self.tool_call_id, "content": self.content, "is_error": self.is_error}

    def to_anthropic(self) -> Dict[str, Any]:
        """Anthropic Messages API ``tool_result`` content block"""
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": self.content,
            "is_error": self.is_error,
        }

    def to_openai(self) -> Dict[str, Any]:
        """OpenAI chat completions ``tool`` message"""
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}


def normalize_tool_calls(tool_calls: List[Dict[str, Any]]) -> List[ToolCallRequest]:
    """
    Parse a list of raw tool calls, preserving request order.

    A malformed call keeps its slot with ``invalid_reason`` set so the batch
    can record it as an error instead of failing as a whole.
    """
    requests = []
    for index, call in enumerate(tool_calls):
        try:
            requests.append(ToolCallRequest.from_dict(call, index))
        except InvalidToolCallError as e:
            raw_id = call.get("id") if isinstance(call, dict) else None
            requests.append(ToolCallRequest(
                id=str(raw_id or f"tool_{index}"),
                name="unknown",
                invalid_reason=e.message,
            ))
    return requests

"""
Unit Tests for tool execution value types
"""
import pytest

from appweaver.core.exceptions import InvalidToolCallError
from appweaver.modules.tool_execution.records import (
    CompletionRecord,
    Failure,
    Success,
    ToolCallRequest,
    ToolResultBlock,
    ToolStatus,
    is_terminal_status,
    normalize_tool_calls,
)


class TestToolCallRequest:
    """Tests for ToolCallRequest.from_dict"""

    def test_flat_shape(self):
        call = ToolCallRequest.from_dict({
            "id": "toolu_1",
            "name": "os-write",
            "arguments": {"file_path": "src/App.tsx", "content": "x"},
        })

        assert call.id == "toolu_1"
        assert call.name == "os-write"
        assert call.file_path == "src/App.tsx"

    def test_openai_shape_with_json_string_arguments(self):
        call = ToolCallRequest.from_dict({
            "id": "call_abc",
            "type": "function",
            "function": {"name": "os-view", "arguments": '{"file_path": "index.html"}'},
        })

        assert call.name == "os-view"
        assert call.arguments == {"file_path": "index.html"}

    def test_invalid_json_arguments_become_empty(self):
        call = ToolCallRequest.from_dict({
            "id": "call_abc",
            "function": {"name": "os-view", "arguments": "{not json"},
        })

        assert call.arguments == {}

    def test_anthropic_input_key(self):
        call = ToolCallRequest.from_dict({"id": "toolu_2", "name": "os-delete", "input": {"file_path": "a.txt"}})

        assert call.arguments == {"file_path": "a.txt"}

    def test_missing_name_raises(self):
        with pytest.raises(InvalidToolCallError):
            ToolCallRequest.from_dict({"id": "toolu_3", "arguments": {}}, index=3)

    def test_missing_id_uses_index(self):
        call = ToolCallRequest.from_dict({"name": "os-search", "arguments": {"query": "x"}}, index=4)

        assert call.id == "tool_4"


class TestNormalizeToolCalls:
    """Tests for normalize_tool_calls"""

    def test_preserves_order_and_keeps_malformed_slot(self):
        calls = normalize_tool_calls([
            {"id": "a", "name": "os-write", "arguments": {}},
            {"id": "b"},
            "not a call",
            {"id": "d", "function": {"name": "os-view", "arguments": "{}"}},
        ])

        assert [call.id for call in calls] == ["a", "b", "tool_2", "d"]
        assert calls[0].invalid_reason is None
        assert calls[1].invalid_reason is not None
        assert calls[2].invalid_reason is not None
        assert calls[3].invalid_reason is None

    def test_empty_list(self):
        assert normalize_tool_calls([]) == []


class TestCompletionRecord:
    """Tests for CompletionRecord"""

    def test_from_success(self):
        record = CompletionRecord.from_outcome(Success("File written"))

        assert record.status == "complete"
        assert record.result == "File written"
        assert record.error is None
        assert record.completed_at
        assert record.succeeded

    def test_from_failure(self):
        record = CompletionRecord.from_outcome(Failure("boom"))

        assert record.status == "error"
        assert record.error == "boom"
        assert not record.succeeded
        assert record.is_terminal

    def test_to_dict_drops_empty_fields(self):
        data = CompletionRecord(status="complete", result="ok").to_dict()

        assert data == {"status": "complete", "result": "ok"}

    def test_non_terminal_record(self):
        assert not CompletionRecord.from_dict({"status": "running"}).is_terminal


class TestStatuses:
    def test_terminal_statuses(self):
        assert is_terminal_status("complete")
        assert is_terminal_status("error")
        assert not is_terminal_status("running")
        assert not is_terminal_status(None)

    def test_outcome_status(self):
        assert Success("x").status == ToolStatus.COMPLETE
        assert Failure("x").status == ToolStatus.ERROR


class TestToolResultBlock:
    def test_provider_formats(self):
        block = ToolResultBlock(tool_call_id="toolu_1", content="done", is_error=False)

        assert block.to_anthropic() == {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": "done",
            "is_error": False,
        }
        assert block.to_openai() == {"role": "tool", "tool_call_id": "toolu_1", "content": "done"}

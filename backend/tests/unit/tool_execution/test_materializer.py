"""
Unit Tests for the result materializer
"""
from appweaver.modules.tool_execution.materializer import materialize, result_content
from appweaver.modules.tool_execution.records import CompletionRecord, ToolCallRequest


def calls(*names):
    return [ToolCallRequest(id=f"toolu_{i}", name=name) for i, name in enumerate(names)]


class TestMaterialize:
    """Tests for materialize"""

    def test_request_order_regardless_of_completion_order(self):
        completed = {
            2: CompletionRecord(status="complete", result="third", completed_at="t1"),
            0: CompletionRecord(status="complete", result="first", completed_at="t3"),
            1: CompletionRecord(status="complete", result="second", completed_at="t2"),
        }

        blocks = materialize(calls("os-write", "os-view", "os-search"), completed)

        assert [block.tool_call_id for block in blocks] == ["toolu_0", "toolu_1", "toolu_2"]
        assert [block.content for block in blocks] == ["first", "second", "third"]
        assert not any(block.is_error for block in blocks)

    def test_placeholders(self):
        completed = {
            0: CompletionRecord(status="complete", result=""),
            1: CompletionRecord(status="error"),
        }

        blocks = materialize(calls("os-write", "os-delete", "os-view"), completed)

        assert blocks[0].content == "Tool os-write completed successfully"
        assert blocks[0].is_error is False
        assert blocks[1].content == "Tool execution failed"
        assert blocks[1].is_error is True
        assert blocks[2].content == "Tool os-view status unknown"
        assert blocks[2].is_error is True

    def test_error_text_is_passed_through(self):
        content, is_error = result_content(
            ToolCallRequest(id="t", name="os-view"),
            CompletionRecord(status="error", error="File not found: src/x.ts"),
        )

        assert content == "File not found: src/x.ts"
        assert is_error

    def test_non_terminal_record_is_unknown(self):
        content, is_error = result_content(
            ToolCallRequest(id="t", name="os-write"),
            CompletionRecord(status="running"),
        )

        assert content == "Tool os-write status unknown"

    def test_empty(self):
        assert materialize([], {}) == []

"""
Unit Tests for the exception hierarchy
"""
from appweaver.core.exceptions import (
    AppFileNotFoundError,
    BatchNotFoundError,
    DispatchFailureError,
    InvalidToolCallError,
    MessageNotFoundError,
    ToolTimeoutError,
    UnknownToolError,
    ValidationError,
    WriteConflictError,
    error_response,
)
from appweaver.main import status_code_for


class TestExceptionPayloads:
    def test_not_found_codes(self):
        assert MessageNotFoundError("m1").code == "MESSAGE_NOT_FOUND"
        batch_error = BatchNotFoundError("exec_1", "m1")
        assert batch_error.code == "BATCH_NOT_FOUND"
        assert batch_error.details == {"resource_type": "Batch", "resource_id": "exec_1", "message_id": "m1"}

    def test_file_not_found_message(self):
        assert AppFileNotFoundError("src/a.ts", "app_1").message == "File not found: src/a.ts"

    def test_tool_messages(self):
        assert DispatchFailureError(2, "broker down").message == "Failed to launch: broker down"
        assert ToolTimeoutError(1, 180).message == "Tool execution timed out"
        assert UnknownToolError("os-fly").message == "Unknown tool: os-fly"

    def test_invalid_tool_call_is_a_validation_error(self):
        error = InvalidToolCallError("Tool call 3 has no tool name")

        assert isinstance(error, ValidationError)
        assert error.code == "INVALID_TOOL_CALL"

    def test_error_response(self):
        body = error_response(WriteConflictError("m1", 4))

        assert body["success"] is False
        assert body["error"]["code"] == "WRITE_CONFLICT"
        assert body["error"]["details"]["expected_version"] == 4


class TestStatusCodes:
    def test_status_code_for(self):
        assert status_code_for(MessageNotFoundError("m1")) == 404
        assert status_code_for(ValidationError("bad")) == 400
        assert status_code_for(WriteConflictError("m1", 1)) == 500

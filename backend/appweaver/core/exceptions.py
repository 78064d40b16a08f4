"""
Custom Exceptions for AppWeaver
===============================

Tool execution failures are never raised out of the coordinator's public
entry points; they end up as per-tool ``status``/``error`` fields. These
classes are used at the seams where a failure has to travel as an exception
(inside a worker, inside a retry loop, at the HTTP layer).

Usage:
    from appweaver.core.exceptions import MessageNotFoundError, WriteConflictError

    if not message:
        raise MessageNotFoundError(message_id)
"""

from typing import Optional, Any, Dict


class AppWeaverError(Exception):
    """Base exception for all AppWeaver errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(AppWeaverError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class MessageNotFoundError(ResourceNotFoundError):
    """Owning chat message not found"""

    def __init__(self, message_id: str):
        super().__init__("Message", message_id)


class AppNotFoundError(ResourceNotFoundError):
    """App not found"""

    def __init__(self, app_id: str):
        super().__init__("App", app_id)


class BatchNotFoundError(ResourceNotFoundError):
    """Tool batch not found in a message's execution log"""

    def __init__(self, execution_id: str, message_id: str = ""):
        super().__init__("Batch", execution_id)
        self.details["message_id"] = message_id


class AppFileNotFoundError(ResourceNotFoundError):
    """File not found in the app's virtual filesystem"""

    def __init__(self, file_path: str, app_id: str = ""):
        super().__init__("File", file_path)
        self.message = f"File not found: {file_path}"
        self.details["app_id"] = app_id


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(AppWeaverError):
    """Input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidToolCallError(ValidationError):
    """Tool call request could not be interpreted"""

    def __init__(self, message: str = "Invalid tool call format"):
        super().__init__(message)
        self.code = "INVALID_TOOL_CALL"


# ============================================
# Tool Execution Errors
# ============================================

class ToolExecutionError(AppWeaverError):
    """A tool worker failed; the message is recorded verbatim"""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message, code="TOOL_EXECUTION_FAILED")
        if tool_name:
            self.details["tool_name"] = tool_name


class UnknownToolError(ToolExecutionError):
    """Tool name has no handler"""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", tool_name=tool_name)
        self.code = "UNKNOWN_TOOL"


class DispatchFailureError(AppWeaverError):
    """A worker unit could not be scheduled"""

    def __init__(self, tool_index: int, reason: str):
        super().__init__(f"Failed to launch: {reason}", code="DISPATCH_FAILED")
        self.details["tool_index"] = tool_index


class WriteConflictError(AppWeaverError):
    """Optimistic write on the execution log lost a compare-and-swap"""

    def __init__(self, message_id: str, expected_version: int):
        super().__init__(
            f"Execution log for message '{message_id}' changed since version {expected_version}",
            code="WRITE_CONFLICT",
            details={"message_id": message_id, "expected_version": expected_version}
        )


class ToolTimeoutError(AppWeaverError):
    """Batch deadline elapsed before a tool reported back"""

    def __init__(self, tool_index: int, timeout_seconds: float):
        super().__init__("Tool execution timed out", code="TOOL_TIMEOUT")
        self.details = {"tool_index": tool_index, "timeout_seconds": timeout_seconds}


# ============================================
# Deployment Errors
# ============================================

class DeploymentError(AppWeaverError):
    """Deployment trigger or request failed"""

    def __init__(self, message: str, app_id: Optional[str] = None):
        super().__init__(message, code="DEPLOYMENT_ERROR")
        if app_id:
            self.details["app_id"] = app_id


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: AppWeaverError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }

"""
Error handling for chatdock IPC endpoints and transports.

Structured error codes shared by the daemon control socket, the agent
message channel and the DevTools client.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Error codes for chatdock.

    JSON-RPC standard codes:
    - -32700: Parse error
    - -32600: Invalid request
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error

    Custom codes (1000-1999):
    - 1000-1099: Validation errors
    - 1100-1199: Configuration errors
    - 1200-1299: Transport errors
    - 1300-1399: Browser window errors
    """

    # JSON-RPC standard errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Validation errors (1000-1099)
    UNKNOWN_SERVICE = 1001

    # Configuration errors (1100-1199)
    CONFIG_LOAD_FAILED = 1100

    # Transport errors (1200-1299)
    CHANNEL_CLOSED = 1200
    FRAME_TOO_LARGE = 1201
    FRAME_MALFORMED = 1202
    DEVTOOLS_UNAVAILABLE = 1203
    DEVTOOLS_TIMEOUT = 1204

    # Browser window errors (1300-1399)
    WINDOW_NOT_FOUND = 1300
    KEEPALIVE_EXISTS = 1301


class ChatdockError(Exception):
    """Base exception for chatdock errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize chatdock error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON-RPC response.

        Returns:
            Error dictionary with code, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class ConfigLoadError(ChatdockError):
    """Configuration loading error."""

    def __init__(self, file_path: str, reason: str):
        super().__init__(
            code=ErrorCode.CONFIG_LOAD_FAILED,
            message=f"Failed to load configuration from {file_path}: {reason}",
            suggestion="Check file syntax and permissions",
            context={"file_path": file_path, "reason": reason}
        )


class UnknownServiceError(ChatdockError):
    """Service name is not in the catalog."""

    def __init__(self, name: str, known: list):
        super().__init__(
            code=ErrorCode.UNKNOWN_SERVICE,
            message=f"Unknown service: {name}",
            suggestion=f"Use one of: {', '.join(known)}",
            context={"service": name, "known": known}
        )


class TransportError(ChatdockError):
    """Message channel failure."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CHANNEL_CLOSED):
        super().__init__(code=code, message=message)


class FrameTooLargeError(TransportError):
    """Inbound or outbound frame exceeds the size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Message too large: {size} bytes (limit {limit})",
            code=ErrorCode.FRAME_TOO_LARGE,
        )
        self.context = {"size": size, "limit": limit}


def error_response(error: Exception, request_id: Optional[Any] = None) -> Dict[str, Any]:
    """
    Create JSON-RPC error response from exception.

    Args:
        error: Exception to convert
        request_id: JSON-RPC request ID

    Returns:
        JSON-RPC error response dictionary
    """
    if isinstance(error, ChatdockError):
        error_dict = error.to_dict()
    else:
        error_dict = {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": str(error),
            "suggestion": "Check daemon logs for details"
        }

    return {
        "jsonrpc": "2.0",
        "error": error_dict,
        "id": request_id
    }


def validate_params(params: Dict[str, Any], required: list, optional: Optional[list] = None) -> None:
    """
    Validate request parameters.

    Raises:
        ChatdockError: If required parameters are missing or unknown parameters provided
    """
    missing = [key for key in required if key not in params]
    if missing:
        raise ChatdockError(
            code=ErrorCode.INVALID_PARAMS,
            message=f"Missing required parameters: {', '.join(missing)}",
            suggestion=f"Provide required parameters: {', '.join(missing)}",
            context={"missing": missing, "required": required}
        )

    if optional is not None:
        allowed = set(required + optional)
        unknown = [key for key in params.keys() if key not in allowed]
        if unknown:
            raise ChatdockError(
                code=ErrorCode.INVALID_PARAMS,
                message=f"Unknown parameters: {', '.join(unknown)}",
                suggestion="Remove unknown parameters",
                context={"unknown": unknown, "allowed": sorted(allowed)}
            )

"""Project error hierarchy."""


class AgentGateError(Exception):
    """Base error."""

    status_code = 500
    code = "internal_error"
    error_type = "api_error"


class InvalidRequestError(AgentGateError):
    """Raised when the inbound payload is malformed."""

    status_code = 400
    code = "invalid_request"
    error_type = "invalid_request_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class ToolArgumentsError(AgentGateError):
    """Raised when a tool call carries arguments that are not a JSON object."""

    code = "invalid_tool_arguments"


class BridgeError(AgentGateError):
    """Raised when the agent runtime reports a failure."""

    code = "bridge_error"


class BridgeCancelledError(AgentGateError):
    """Raised by a bridge after cooperative cancellation; expected, never surfaced."""

    code = "bridge_cancelled"

"""
Error types raised across the bridge.

Each error carries a user-facing message next to the technical one so the
boundary can decide what, if anything, the chat gets to see.
"""

from typing import Optional

DEFAULT_USER_MESSAGE = "Sorry, something went wrong on my side."


class BridgeError(Exception):
    """Base exception for bridge errors."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        """
        Initialize bridge error.

        Args:
            message: Technical error message for logging
            user_message: User-friendly message to display
        """
        super().__init__(message)
        self.user_message = user_message or DEFAULT_USER_MESSAGE


class ConfigurationError(BridgeError):
    """Malformed or missing configuration. Raised before any network call."""


class ProvisioningError(BridgeError):
    """Agent creation or deletion failed, or the response was malformed."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        if status is not None:
            message = f"{message}: {status}"
            if body:
                message = f"{message} - {body}"
        super().__init__(message)
        self.status = status
        self.body = body


class TransportError(BridgeError):
    """Network failure talking to the agent platform or the chat platform."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        if status is not None:
            message = f"{message}: {status}"
            if body:
                message = f"{message} - {body}"
        super().__init__(message)
        self.status = status
        self.body = body


class ToolExecutionError(BridgeError):
    """A client-side tool could not run."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool {tool_name} failed: {message}")

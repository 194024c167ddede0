"""
Exceptions raised by the syndication core.

Exception Hierarchy:
    ElementaError (base)
    ├── ApiClientError
    │   └── DestinationServerError
    ├── CleanupConflictError
    ├── InvalidTransitionError
    └── FeedReadError
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ElementaError(Exception):
    """
    Base exception carrying structured context for logging.

    Attributes:
        message: Human-readable error message
        context: Additional context (connection id, destination, status...)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} | Context: {context_str}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logs."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ApiClientError(ElementaError):
    """
    Destination API call failed.

    Context should include:
        - endpoint: API path that failed
        - status_code: HTTP status code (if a response was received)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class DestinationServerError(ApiClientError):
    """Destination answered with HTTP status >= 500 (distress signal)."""
    pass


class CleanupConflictError(ElementaError):
    """A non-terminal cleanup run already exists for the connection."""
    pass


class InvalidTransitionError(ElementaError):
    """A run was asked to move to a state its state machine forbids."""
    pass


class FeedReadError(ElementaError):
    """The source feed file could not be read."""
    pass

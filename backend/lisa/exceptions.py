"""Exceptions shared by the chat gateway, the history store and the client."""
from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base exception for the chat backend."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ChatValidationError(ChatError):
    """Raised when input is rejected before any network or database call."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class ExternalServiceError(ChatError):
    """Raised when the assistant call fails or times out. Nothing was persisted."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details)


class PersistenceError(ChatError):
    """Raised when saving to the history store fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PERSISTENCE_ERROR", details)


class NotFoundError(ChatError):
    """Raised for a missing thread and for a thread owned by someone else alike."""

    def __init__(self, resource: str, identifier: str):
        message = f"{resource} not found"
        super().__init__(message, "NOT_FOUND", {"resource": resource, "identifier": identifier})


class AuthRequiredError(ChatError):
    """Raised when an operation needs an identity and none was supplied."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, "AUTH_REQUIRED")


class InvalidPayloadError(ChatError):
    """Raised by the client when a response does not have the expected shape."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_PAYLOAD", details)


class ApiError(ChatError):
    """Raised by the client for an unexpected HTTP status or a transport failure."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message, "API_ERROR", {"status": status})

"""
Shared exceptions for AI service modules.
"""


class AIServiceError(Exception):
    """Raised when AI service operations fail."""

    pass


class ServiceResponseError(AIServiceError):
    """Raised when the service answers with non-JSON or missing fields."""

    pass


class ServiceTimeoutError(AIServiceError):
    """Raised when a call to the service exceeds its timeout."""

    pass

"""Custom exception classes for the application."""

class IssueTrackerException(Exception):
    """Base exception for all application errors."""
    pass


class ValidationError(IssueTrackerException):
    """Raised when input validation fails."""
    pass


class DatabaseError(IssueTrackerException):
    """Raised when database operations fail."""
    pass


class CounterStoreError(DatabaseError):
    """Raised when the rate-limit counter table cannot be read or written."""
    pass


class ResourceNotFoundError(IssueTrackerException):
    """Raised when a requested resource is not found."""
    pass


class AIServiceError(IssueTrackerException):
    """Raised when the external AI text-generation call fails."""
    pass


class UpstreamRateLimitError(AIServiceError):
    """Raised when the AI provider rejects the call with a quota error."""
    pass


class AICredentialsError(AIServiceError):
    """Raised when the AI provider key is missing or rejected."""
    pass


class AIRateLimitExceededError(IssueTrackerException):
    """Raised when a user has used up their own AI quota."""

    def __init__(self, result):
        """
        Args:
            result: The RateLimitResult returned by the limiter
        """
        super().__init__(result.error or "Rate limit exceeded")
        self.result = result

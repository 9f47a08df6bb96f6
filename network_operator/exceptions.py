"""Custom exceptions for the network operator."""


class NetworkOperatorError(Exception):
    """Base exception for all network operator errors."""

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ClusterApiError(NetworkOperatorError):
    """Exception raised when a cluster API call fails."""

    pass


class NotFoundError(ClusterApiError):
    """Exception raised when a requested object does not exist."""

    pass


class ConflictError(ClusterApiError):
    """Exception raised when a write loses an optimistic-concurrency race."""

    pass


class ValidationError(NetworkOperatorError):
    """Exception raised when the desired configuration is invalid."""

    def __init__(self, message: str, errors: list[str] | None = None, details: str | None = None):
        self.errors = list(errors or [])
        super().__init__(message, details)


class UnsafeChangeError(NetworkOperatorError):
    """Exception raised when a configuration change would disrupt a live cluster."""

    def __init__(
        self, message: str, violations: list[str] | None = None, details: str | None = None
    ):
        self.violations = list(violations or [])
        super().__init__(message, details)


class ProbeError(NetworkOperatorError):
    """Exception raised when the MTU probe fails."""

    pass


class BootstrapError(NetworkOperatorError):
    """Exception raised when platform resources cannot be bootstrapped."""

    pass


class RenderError(NetworkOperatorError):
    """Exception raised when manifests cannot be rendered."""

    pass


class ApplyError(NetworkOperatorError):
    """Exception raised when one or more rendered objects failed to apply."""

    def __init__(self, message: str, failures: int = 1, details: str | None = None):
        self.failures = failures
        super().__init__(message, details)


class StatusError(NetworkOperatorError):
    """Exception raised when status cannot be computed or persisted."""

    pass


class MigrationError(NetworkOperatorError):
    """Exception raised for network migration errors."""

    pass


class CycleCancelled(NetworkOperatorError):
    """Exception raised when a reconciliation cycle hits its deadline."""

    pass


class ConfigurationError(NetworkOperatorError):
    """Exception raised for operator settings errors."""

    pass

"""
Custom exception classes for the drip-feed scheduler.

Exceptions follow the fail-fast philosophy: no fallbacks, surface errors
immediately with clear context for debugging.  Per-channel and per-item
failures are caught by the scheduler and folded into the run report; only
configuration, store-wide and timeout errors reach the caller.

Hierarchy:
    Exception
    +-- SchedulerBaseError (base for scheduler-specific errors)
    |   +-- RateLimitExceededError
    |   +-- SchedulingConflictError
    +-- ValidationError (ValueError)
    |   +-- InvalidChannelConfigError
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
    +-- RunTimeoutError
"""

from typing import List


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class SchedulerBaseError(Exception):
    """Base exception for all scheduler-related errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


class RunTimeoutError(Exception):
    """Raised when a scheduler invocation exceeds its deadline.

    Attributes:
        operation: Name of the invocation that timed out.
        timeout: Timeout duration in seconds.
    """

    def __init__(self, operation: str, timeout: int):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"'{operation}' timed out after {timeout} seconds")


# =============================================================================
# SCHEDULER EXCEPTIONS
# =============================================================================


class RateLimitExceededError(SchedulerBaseError):
    """Raised when a keyed rate limit rejects a request.

    Attributes:
        key: The rate-limit key that was exhausted.
        retry_after: Seconds until the oldest hit expires.
    """

    def __init__(self, key: str, retry_after: float):
        self.key = key
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for '{key}'. "
            f"Retry in {retry_after:.0f}s"
        )


class SchedulingConflictError(SchedulerBaseError):
    """Raised when a slot write would exceed the slot's capacity."""

    pass


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================


class InvalidChannelConfigError(ValidationError):
    """Raised when a channel's drip-feed settings are unusable.

    Attributes:
        channel_id: Identifier of the offending channel.
        issues: List of validation issues found.
    """

    def __init__(self, channel_id: str, issues: List[str]):
        self.channel_id = channel_id
        self.issues = issues
        super().__init__(
            f"Invalid drip feed config for channel {channel_id}: {issues}"
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "SchedulerBaseError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    "RunTimeoutError",
    # Scheduler
    "RateLimitExceededError",
    "SchedulingConflictError",
    # Validation
    "InvalidChannelConfigError",
]

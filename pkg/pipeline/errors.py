"""
Errors surfaced by the pipeline board.

Validation and authorization errors are raised before any I/O happens.
Persistence errors come from the backing store; subscription errors end a
change-feed stream.
"""


class PipelineError(Exception):
    """Base class for pipeline board errors."""
    pass


class ValidationError(PipelineError):
    """Raised when a task draft or patch fails validation."""
    pass


class PersistenceError(PipelineError):
    """Raised when the backing store rejects or fails a write or read."""
    pass


class AuthorizationError(PipelineError, PermissionError):
    """Raised when an identity attempts an operation reserved for the creator."""
    pass


class SubscriptionError(PipelineError):
    """Raised when the change stream is lost."""
    pass

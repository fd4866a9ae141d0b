"""
Exception hierarchy for embedding regeneration.

Launch-time errors (validation, authorization) propagate to the caller.
Backend errors are raised by the client and only ever caught inside the
worker loop, where every class is retried the same way.
"""

from typing import List, Optional


class EmbedRegenError(Exception):
    """Base class for all embedregen errors."""
    pass


class ValidationError(EmbedRegenError):
    """Raised when launch parameters are rejected."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid parameters")


class AuthorizationError(EmbedRegenError):
    """Raised when the caller may not launch jobs."""
    pass


class UnauthorizedError(AuthorizationError):
    """No caller identity was supplied."""
    pass


class ForbiddenError(AuthorizationError):
    """Caller is known but lacks the required role."""
    pass


class BackendError(EmbedRegenError):
    """Raised when a batch request to the embedding backend fails."""

    category = "opaque"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientBackendError(BackendError):
    """Backend failure whose text looks infrastructure-related."""

    category = "transient"


class OpaqueBackendError(BackendError):
    """Any other backend-reported failure."""

    category = "opaque"


class NetworkError(BackendError):
    """The backend could not be reached at all."""

    category = "network"


class CheckpointWriteError(EmbedRegenError):
    """A checkpoint upsert failed. Reported, never raised into the worker."""

    def __init__(self, job_id: str, message: str):
        super().__init__(f"Checkpoint write failed for {job_id}: {message}")
        self.job_id = job_id
        self.message = message

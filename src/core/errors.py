"""
Error kinds raised by the bracket engine.

Validation errors are rejections surfaced to the caller as-is. Storage
conflicts are retryable; bracket corruption and storage failures are not.
"""
from typing import Dict, Optional, Any


class EngineError(Exception):
    """Base class for every error the engine reports."""

    kind = 'engine_error'
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {'error': self.message, 'kind': self.kind}
        if self.details:
            data['details'] = self.details
        return data

    def __str__(self):
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ValidationError(EngineError):
    """A proposed result was rejected; never retried."""

    http_status = 400


class NotFoundError(ValidationError):
    kind = 'not_found'
    http_status = 404


class UnauthorizedError(ValidationError):
    kind = 'unauthorized'
    http_status = 403


class InvalidStateError(ValidationError):
    kind = 'invalid_state'
    http_status = 409


class InvalidWinnerError(ValidationError):
    kind = 'invalid_winner'


class NoChangeError(ValidationError):
    kind = 'no_change'


class DownstreamLockedError(ValidationError):
    """A match reachable from this one already has a winner."""

    kind = 'downstream_locked'
    http_status = 409


class BracketCorruptionError(EngineError):
    """The stored bracket is structurally inconsistent; needs an operator."""

    kind = 'bracket_corruption'


class StorageConflictError(EngineError):
    kind = 'storage_conflict'
    http_status = 503
    retryable = True


class StorageFailureError(EngineError):
    kind = 'storage_failure'

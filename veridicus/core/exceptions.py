"""Custom exception hierarchy.

Each error class carries the HTTP status it is rendered with, so request
handlers can let service errors propagate and the application-level handler
turns them into ``{"error": message}`` responses.
"""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(AppError):
    """Raised when input validation fails."""
    status_code = 400


class AuthenticationError(AppError):
    """Raised when a bearer token is missing or invalid."""
    status_code = 401


class NotFoundError(AppError):
    """Raised when a resource is absent or not owned by the caller.

    Both situations are reported identically to avoid leaking existence.
    """
    status_code = 404


class CaseNotFoundError(NotFoundError):
    pass


class EvidenceNotFoundError(NotFoundError):
    pass


class AnalysisNotFoundError(NotFoundError):
    pass


class ContradictionNotFoundError(NotFoundError):
    pass


class UnsupportedMediaTypeError(AppError):
    """Raised when an upload fails content-type validation."""
    status_code = 415


class StorageError(AppError):
    """Raised when a Supabase Storage operation fails."""
    status_code = 500


class APIClientError(AppError):
    """Raised when an external API call fails."""
    status_code = 500


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    status_code = 500


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    status_code = 500

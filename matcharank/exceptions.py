"""Custom exceptions for MatchaRank.

Defines specific exception types for better error handling and reporting.
Every exception carries an HTTP-style status code so the API layer can map
it without knowing the details.
"""

from typing import Any, Dict, Optional


class MatchaRankError(Exception):
    """Base exception for MatchaRank errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidRequestError(MatchaRankError):
    """Raised when a caller passes an invalid limit, offset or filter."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, details=details)


class StoreUnavailableError(MatchaRankError):
    """Raised by store adapters when the data store cannot be reached."""

    def __init__(self, operation: str, error: Optional[Exception] = None):
        message = f"Data store unavailable during '{operation}'"
        if error is not None:
            message = f"{message}: {error}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "error": str(error) if error else None,
                "error_type": type(error).__name__ if error else None,
            },
        )


class CacheUnavailableError(MatchaRankError):
    """Raised by cache adapters when the cache backend fails."""

    def __init__(self, operation: str, error: Exception):
        super().__init__(
            message=f"Cache unavailable during '{operation}': {error}",
            status_code=503,
            details={"operation": operation, "error_type": type(error).__name__},
        )


class IndexUnavailableError(MatchaRankError):
    """Raised when the search index cannot be built."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="Search index not available. Please retry shortly.",
            status_code=503,
            details=details,
        )


class RecommendationNotFoundError(MatchaRankError):
    """Raised when a recommendation id is unknown to the store."""

    def __init__(self, recommendation_id: str):
        super().__init__(
            message=f"Recommendation '{recommendation_id}' not found",
            status_code=404,
            details={"recommendation_id": recommendation_id},
        )


class ExperimentConfigError(MatchaRankError):
    """Raised when an experiment definition is inconsistent."""

    def __init__(self, experiment_name: str, reason: str):
        super().__init__(
            message=f"Invalid experiment '{experiment_name}': {reason}",
            status_code=500,
            details={"experiment": experiment_name, "reason": reason},
        )

"""Utility functions shared by the recommendation and search engines.

This module provides text normalization, the read-retry policy used against
the data store, chunked iteration for batch work and a timezone-aware clock.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

from matcharank.exceptions import InvalidRequestError, StoreUnavailableError

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_text(text: Optional[str]) -> str:
    """Normalize free text for matching.

    Lowercases, replaces punctuation with spaces, collapses whitespace and
    trims the result.

    Example:
        >>> normalize_text("  Ceremonial-Grade  Uji!! ")
        'ceremonial grade uji'
    """
    if not text:
        return ""
    text = _NON_WORD_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def tokenize(text: Optional[str], min_length: int = 1) -> List[str]:
    """Split normalized text into tokens of at least `min_length` chars."""
    return [t for t in normalize_text(text).split(" ") if len(t) >= min_length]


def retry_read(
    operation: Callable[[], T],
    description: str,
    attempts: int = 2,
    log: Optional[logging.Logger] = None,
) -> T:
    """Run a store read, retrying once on `StoreUnavailableError`.

    Args:
        operation: Zero-argument callable performing the read.
        description: Short name of the read, used in log records.
        attempts: Total number of attempts (default: 2, i.e. one retry).
        log: Logger to report failures on.

    Returns:
        The value returned by `operation`.

    Raises:
        StoreUnavailableError: If every attempt failed.
    """
    log = log or logger
    last_error: Optional[StoreUnavailableError] = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StoreUnavailableError as e:
            last_error = e
            log.warning(
                "Store read failed",
                extra={
                    "operation": description,
                    "attempt": attempt,
                    "error": e.message,
                },
            )

    raise last_error


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of `items` of at most `size` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def validate_count(value: int, name: str, maximum: Optional[int] = None) -> None:
    """Reject a limit or offset that is not a non-negative int (or too large).

    Raises:
        InvalidRequestError: If the value is invalid.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequestError(f"{name} must be an integer", {name: repr(value)})
    if value < 0:
        raise InvalidRequestError(f"{name} must not be negative", {name: value})
    if maximum is not None and value > maximum:
        raise InvalidRequestError(f"{name} must not exceed {maximum}", {name: value})

"""
Bounded retry for transient persistence failures.

Storage errors that may succeed on a second try (lock timeouts, dropped
connections, serialization failures) surface from SQLAlchemy as
``OperationalError``.  :func:`storage_errors` translates them into
:class:`~gamenight.errors.TransientPersistenceFailure`; :func:`with_retries`
re-runs a whole unit of work on that error with exponential backoff and
gives up after ``max_attempts``.

Only whole transactions are retried: the callable must open and commit its
own session so a failed attempt leaves nothing behind.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from gamenight.errors import TransientPersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def storage_errors():
    """Re-raise retryable storage errors as ``TransientPersistenceFailure``."""
    try:
        yield
    except OperationalError as exc:
        raise TransientPersistenceFailure(f"Storage unavailable: {exc.orig}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientPersistenceFailure("Connection lost") from exc
        raise


def with_retries(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 0.05,
    label: str = "operation",
) -> T:
    """Run *operation*, retrying transient failures with exponential backoff.

    Delay before attempt ``n`` (1-based, n ≥ 2) is ``base_delay * 2**(n-2)``.
    Any non-retryable exception propagates immediately.

    Raises:
        TransientPersistenceFailure: When every attempt failed transiently.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            with storage_errors():
                return operation()
        except TransientPersistenceFailure as exc:
            if attempt < max_attempts - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "%s attempt %d/%d failed transiently (%s); retrying in %.2fs",
                    label, attempt + 1, max_attempts, exc, delay,
                )
                time.sleep(delay)
            else:
                logger.error("%s failed after %d attempts: %s", label, max_attempts, exc)
                raise

"""
Database utilities for connection management and error handling
"""
import asyncio
import functools
import logging
from typing import Callable, Any, TypeVar, cast, Awaitable

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from app.core.exceptions import StoreError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Driver level error names that indicate a dropped or refused connection
TRANSIENT_ERROR_NAMES = (
    "ConnectionError",
    "OperationalError",
    "ConnectionDoesNotExistError",
    "ConnectionRefusedError",
    "InterfaceError",
)


def is_transient_db_error(exc: BaseException) -> bool:
    """True when the error is worth retrying (lost connection, refused connect)."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    error_name = type(exc).__name__
    orig = getattr(exc, "orig", None)
    orig_name = type(orig).__name__ if orig is not None else ""
    return any(name in error_name or name in orig_name for name in TRANSIENT_ERROR_NAMES)


def with_db_retry(
    max_retries: int = 3,
    retry_delay: float = 0.5
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator that retries store operations on transient connection errors.

    Non-transient errors are re-raised immediately. Once retries are
    exhausted the last error is wrapped in a StoreError named after the
    decorated function.

    Args:
        max_retries: Maximum number of retries before giving up
        retry_delay: Base delay between retries in seconds (doubled per retry)
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except SQLAlchemyError as e:
                    if not is_transient_db_error(e):
                        raise
                    attempt += 1
                    if attempt > max_retries:
                        logger.error(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise StoreError(func.__name__, str(e)) from e
                    delay = retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Database connection error in {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s... (Attempt {attempt}/{max_retries})"
                    )
                    await asyncio.sleep(delay)

        return cast(Callable[..., Awaitable[T]], wrapper)

    return decorator

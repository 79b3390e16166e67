"""
Domain errors raised by the quiz services and mapped to HTTP responses in main.py.
"""
import functools
import logging

from fastapi import status

logger = logging.getLogger(__name__)


class QuizServiceError(Exception):
    """Base class for errors the delivery layer knows how to report."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class InvalidArgument(QuizServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_argument"


class Unauthorized(QuizServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(QuizServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"


class RateLimited(QuizServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_type = "rate_limited"

    def __init__(self, message: str = "Too many requests", retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class DependencyFailure(QuizServiceError):
    """A datastore or cache call failed or timed out."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "dependency_failure"

    def __init__(self, message: str = "", summary: str = "Service temporarily unavailable"):
        super().__init__(message)
        self.summary = summary


def dependency_guard(store: str):
    """Re-raise unexpected failures of a store call as DependencyFailure.

    Only the exception type is logged; driver messages can carry connection
    strings.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except QuizServiceError:
                raise
            except Exception as e:
                logger.error("%s call %s failed: %s", store, func.__qualname__, type(e).__name__)
                raise DependencyFailure(f"{store} unavailable") from e
        return wrapper
    return decorator

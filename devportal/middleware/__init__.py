"""
Middleware package for the portal API.

Cross-cutting request logging and last-resort error handling.
"""

from .error_handling import ErrorHandlingMiddleware, register_exception_handlers
from .logging import LoggingMiddleware

__all__ = [
    "ErrorHandlingMiddleware",
    "LoggingMiddleware",
    "register_exception_handlers",
]

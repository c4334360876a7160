"""
Utility functions and decorators.
"""

from .error_handlers import handle_api_errors, to_http_exception
from .keyed_lock import KeyedLocks

__all__ = ["handle_api_errors", "to_http_exception", "KeyedLocks"]

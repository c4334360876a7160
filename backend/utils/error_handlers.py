"""
Error handling decorators and utilities for API endpoints.

Domain exceptions raised by the engine are translated into HTTPExceptions in
one place, so route handlers only contain the happy path.
"""

import inspect
from functools import wraps
from typing import Callable
from fastapi import HTTPException
import logging

from constants import HTTPStatus
from exceptions import (
    ApplicationError,
    ConfigurationError,
    DatabaseError,
    DirectoryGoneError,
    NotFoundError,
    PermissionDeniedError,
    RangeNotSatisfiableError,
    TranscodeError,
    TranscodeTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_http_exception(operation_name: str, error: ApplicationError) -> HTTPException:
    """
    Map a domain exception to the HTTPException the API returns for it.

    Transcoder failures carry the diagnostic tail of the ffmpeg output in the
    detail so the client can show what went wrong.
    """
    if isinstance(error, (ConfigurationError, ValidationError)):
        logger.warning(f"{operation_name} - Validation error: {error.message}")
        return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=error.message)

    if isinstance(error, (NotFoundError, DirectoryGoneError)):
        logger.info(f"{operation_name} - Not found: {error.message}")
        return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=error.message)

    if isinstance(error, PermissionDeniedError):
        logger.warning(f"{operation_name} - Permission denied: {error.message}")
        return HTTPException(status_code=HTTPStatus.FORBIDDEN, detail=error.message)

    if isinstance(error, RangeNotSatisfiableError):
        return HTTPException(
            status_code=HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE,
            detail=error.message,
            headers={"Content-Range": f"bytes */{error.file_size}"},
        )

    if isinstance(error, TranscodeTimeoutError):
        logger.error(f"{operation_name} - Transcoder timed out: {error.message}")
        return HTTPException(
            status_code=HTTPStatus.GATEWAY_TIMEOUT,
            detail={"message": error.message, "output_tail": error.output_tail},
        )

    if isinstance(error, TranscodeError):
        logger.error(f"{operation_name} - Transcode error: {error.message}")
        return HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail={"message": error.message, "output_tail": error.output_tail},
        )

    if isinstance(error, DatabaseError):
        logger.error(f"{operation_name} - Database error: {error.message}", exc_info=True)
        return HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail=f"Database operation failed: {error.message}"
        )

    logger.error(f"{operation_name} - Application error: {error.message}", exc_info=True)
    return HTTPException(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        detail=f"{operation_name} failed: {error.message}"
    )


def _unexpected(operation_name: str, error: Exception) -> HTTPException:
    logger.error(f"{operation_name} - Unexpected error: {error}", exc_info=True)
    return HTTPException(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        detail=f"{operation_name} failed. Please check server logs."
    )


def handle_api_errors(operation_name: str):
    """
    Decorator to handle engine errors consistently across endpoints.

    Args:
        operation_name: Human-readable name of the operation (e.g., "Proxy generation")

    Returns:
        Decorated function (sync or async, matching the wrapped one)

    Example:
        @router.post("/proxy")
        @handle_api_errors("Proxy generation")
        def create_proxy(...):
            return executor.get_or_create_proxy(source)
    """
    def decorator(func: Callable):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ApplicationError as e:
                raise to_http_exception(operation_name, e)
            except HTTPException:
                # Re-raise HTTPException as-is to preserve status code and detail
                raise
            except Exception as e:
                raise _unexpected(operation_name, e)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ApplicationError as e:
                raise to_http_exception(operation_name, e)
            except HTTPException:
                raise
            except Exception as e:
                raise _unexpected(operation_name, e)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator

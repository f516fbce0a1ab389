"""Mapping of scheduler errors to HTTP errors."""

import logging

from fastapi import HTTPException

from asyncjobs.scheduler import InvalidOperationError, JobNotFoundError


logger = logging.getLogger(__name__)


def to_http_error(error: Exception, action: str) -> HTTPException:
    """
    Convert a scheduler error raised while performing `action`.

    JobNotFoundError -> 404, InvalidOperationError (including
    InvalidRunnableError) -> 400, anything else -> 500.
    """
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidOperationError):
        return HTTPException(status_code=400, detail=str(error))

    logger.exception(f"Failed to {action}")
    return HTTPException(status_code=500, detail=f"Failed to {action}: {error}")

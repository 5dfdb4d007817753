"""Exception handler for structured error responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ..exceptions import CourseForgeException

logger = logging.getLogger(__name__)


async def courseforge_exception_handler(request: Request, exc: CourseForgeException) -> JSONResponse:
    """Log the error and return ``exc.to_dict()`` with its status code.

    Client errors (4xx) are logged at warning; gateway and internal errors
    at error.
    """
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        f"{exc.error_code.value}: {exc.message}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

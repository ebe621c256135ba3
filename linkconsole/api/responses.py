"""Error envelopes shared by the route modules.

Every error response has the shape ``{"error": {"code", "message"}}``.
Domain and service exceptions map onto HTTP status codes here so the
route handlers only need one ``except`` clause per failure mode.
"""

import logging

from starlette.responses import JSONResponse

from linkconsole.errors.domain import (
    ConflictError,
    ConnectionNameError,
    DomainError,
    InactiveOwnerError,
    NotFoundError,
    ValidationError,
)
from linkconsole.services.errors import RemoteError, StoreError

logger = logging.getLogger(__name__)


def error_response(status_code: int, code: str, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, **extra}},
    )


def internal_error(e: Exception, operation: str) -> JSONResponse:
    """Build a structured 500 response and log the full traceback."""
    logger.error(
        "Unexpected error during %s: %s: %s",
        operation, type(e).__name__, e,
        exc_info=True,
    )
    return error_response(500, "INTERNAL_ERROR", f"Unexpected error during {operation}")


def domain_error_response(e: Exception, operation: str) -> JSONResponse:
    """Map a raised exception to its HTTP error envelope."""
    if isinstance(e, ConnectionNameError):
        return error_response(400, e.code, e.message, rule=e.rule.value)
    if isinstance(e, ValidationError):
        return error_response(400, e.code, e.message)
    if isinstance(e, NotFoundError):
        return error_response(404, e.code, e.message)
    if isinstance(e, ConflictError):
        return error_response(409, e.code, e.message)
    if isinstance(e, InactiveOwnerError):
        return error_response(403, e.code, e.message)
    if isinstance(e, DomainError):
        return error_response(400, e.code, e.message)
    if isinstance(e, RemoteError):
        logger.warning("Link service failure during %s: %s", operation, e)
        return error_response(502, e.code, e.message)
    if isinstance(e, StoreError):
        logger.error("Store failure during %s: %s", operation, e)
        return error_response(500, e.code, e.message)
    return internal_error(e, operation)

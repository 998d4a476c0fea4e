import logging
from typing import NoReturn, Union

from fastapi import HTTPException

from huddle.gateway.base import GatewayError
from huddle.services.errors import ConflictError, HuddleError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


def raise_http_error(exc: Union[HuddleError, GatewayError], failure_message: str) -> NoReturn:
    """Map a service or gateway error onto an HTTP response. Must be called from an except block."""
    if isinstance(exc, GatewayError):
        logger.exception("%s (gateway code=%s)", failure_message, exc.code)
        raise HTTPException(status_code=502, detail=failure_message)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))

"""Business errors raised by services and the handlers that render them.

Services raise ``ValueError`` subclasses (or ``PermissionError``) and routers
map them onto HTTP status codes. Whatever escapes a router is rendered here
as the ``{"success": false, "error": ...}`` envelope.
"""
from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = 'Error interno del servidor'


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class TooManyRequestsError(ValueError):
    pass


class SafePermissionError(PermissionError):
    pass


def http_error(exc: Exception) -> HTTPException:
    """Translate a service error into the matching HTTPException."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TooManyRequestsError):
        return HTTPException(status_code=429, detail=str(exc))
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc) or 'Forbidden')
    return HTTPException(status_code=400, detail=str(exc))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error('http_error status_code=%s path=%s detail=%s', exc.status_code, request.url.path, exc.detail)
    content = {'success': False, 'error': exc.detail}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content), headers=getattr(exc, 'headers', None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    message = first.get('msg', 'Datos inválidos')
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({'success': False, 'error': f'{location}: {message}' if location else message}),
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception('unhandled_error path=%s', request.url.path)
    return JSONResponse(status_code=500, content={'success': False, 'error': GENERIC_ERROR_MESSAGE})


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

"""
Domain errors for the messaging core and their HTTP mapping.

Services raise these; REST routes get them converted by the handlers
registered in register_error_handlers(), the WebSocket loop turns them
into an 'error' frame for the originating connection only.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {'message': self.message, 'code': self.code, 'details': self.details}


class InvalidArgument(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class InternalError(DomainError):
    pass


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error('[API] %s %s failed: %s %s', request.method, request.url.path, exc.message, exc.details)
        headers = {'WWW-Authenticate': 'Bearer'} if isinstance(exc, Unauthenticated) else None
        return JSONResponse({'detail': exc.to_dict()}, status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        err = InvalidArgument('Request validation failed', details={'errors': jsonable_encoder(exc.errors())})
        return JSONResponse({'detail': err.to_dict()}, status_code=err.status_code)

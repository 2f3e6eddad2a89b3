"""
Error taxonomy for the API.

Every error leaves the service as ``{"error": <name>, "detail": <message>}``,
optionally with extra keys (``details`` for field-level validation messages,
``product`` for a duplicate product id, ``message`` for unexpected errors
outside production).
"""
import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

import config

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str = None, **extra: Any):
        super().__init__(status_code=type(self).status_code, detail=detail or self.default_detail)
        self.extra = extra

    def body(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "detail": self.detail, **self.extra}


class ValidationFailed(APIError):
    status_code = 400
    default_detail = "Validation failed"


class OutOfStock(APIError):
    status_code = 400
    default_detail = "Product is out of stock or unavailable"


class AuthenticationFailed(APIError):
    status_code = 401
    default_detail = "Authentication failed"


class Unauthorized(APIError):
    status_code = 401
    default_detail = "Unauthorized - Please log in"


class InvalidToken(APIError):
    status_code = 401
    default_detail = "Unauthorized Access - Invalid Token"


class Forbidden(APIError):
    status_code = 403
    default_detail = "Forbidden - Admin access only"


class NotFound(APIError):
    status_code = 404
    default_detail = "Not found"


class Conflict(APIError):
    status_code = 409
    default_detail = "Conflict"


class Internal(APIError):
    status_code = 500
    default_detail = "Internal server error"


def validation_messages(errors: List[Dict[str, Any]]) -> List[str]:
    messages = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc)
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return messages


async def api_error_handler(request: Request, exc: APIError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.body()))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = ValidationFailed(details=validation_messages(exc.errors()))
    return JSONResponse(status_code=err.status_code, content=err.body())


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    err = Conflict("Resource already exists")
    return JSONResponse(status_code=err.status_code, content=err.body())


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = Internal() if config.is_production() else Internal(message=str(exc))
    return JSONResponse(status_code=err.status_code, content=err.body())


async def catch_unexpected_errors(request: Request, call_next):
    """HTTP middleware turning unhandled errors into ``Internal`` responses.

    Registered inside ``CORSMiddleware`` so 500s carry the CORS headers; the
    ``Exception`` handler below only sees errors raised outside it.
    """
    try:
        return await call_next(request)
    except Exception as exc:
        return await unexpected_error_handler(request, exc)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

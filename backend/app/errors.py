"""
Unified error envelope for the HTTP surface.

Every error body has the shape ``{"detail": {"message", "code", "details"}}``
whether it came from a DomainException that escaped a route, an explicit
HTTPException, or request parsing.
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .core.exceptions import DomainException, HTTP_422_UNPROCESSABLE

logger = logging.getLogger(__name__)


def _envelope(message: str, code: str, details: Any = None) -> Dict[str, Any]:
    return {"detail": {"message": message, "code": code, "details": details or {}}}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        http_exc = exc.to_http_exception()
        if http_exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        return JSONResponse(
            status_code=http_exc.status_code,
            content=jsonable_encoder({"detail": http_exc.detail}),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:])}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=HTTP_422_UNPROCESSABLE,
            content=jsonable_encoder(
                _envelope("Request body is malformed", "REQUEST_INVALID", {"errors": errors})
            ),
        )

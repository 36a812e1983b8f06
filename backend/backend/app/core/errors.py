from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class GenealogyError(Exception):
    """Base for errors the HTTP layer turns into a status code."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(GenealogyError):
    status_code = 400
    code = "validation_error"


class NotFoundError(GenealogyError):
    status_code = 404
    code = "not_found"


class ConflictError(GenealogyError):
    status_code = 409
    code = "conflict"


class InternalError(GenealogyError):
    status_code = 500
    code = "internal_error"


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GenealogyError)
    async def _genealogy_error(request: Request, exc: GenealogyError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
        err = ValidationError(first.get("msg", "invalid request"), field=".".join(loc) or None)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def _db_error(request: Request, exc: SQLAlchemyError):
        logger.exception("persistence failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=InternalError("persistence failure").to_dict())

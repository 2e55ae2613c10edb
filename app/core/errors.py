# app/core/errors.py
# Error taxonomy of the builder core + FastAPI handlers
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


class BuilderError(Exception):
    """Base for every error the builder reports to callers."""

    kind = "BuilderError"
    status_code = 400
    # blocking errors need operator acknowledgement in the UI
    blocking = False

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "detail": self.detail,
            "blocking": self.blocking,
        }


class ValidationError(BuilderError):
    """One or more settings values failed their field contract."""

    kind = "ValidationError"
    status_code = 422

    def __init__(self, field_errors: Dict[str, List[str]], message: str | None = None) -> None:
        self.field_errors = {k: list(v) for k, v in field_errors.items()}
        super().__init__(
            message or f"{len(self.field_errors)} field(s) failed validation",
            detail={"fields": self.field_errors},
        )


class OrderMismatch(BuilderError):
    kind = "OrderMismatch"
    status_code = 409

    def __init__(self, *, scope: str, missing: List[str], unknown: List[str]) -> None:
        self.missing = list(missing)
        self.unknown = list(unknown)
        super().__init__(
            f"Order payload does not match the current {scope} set",
            detail={"scope": scope, "missing": self.missing, "unknown": self.unknown},
        )


class NotFound(BuilderError):
    kind = "NotFound"
    status_code = 404
    blocking = True


class PublishConflict(BuilderError):
    kind = "PublishConflict"
    status_code = 409
    blocking = True

    def __init__(self, errors: List[Dict[str, Any]], message: str = "Draft cannot be published") -> None:
        self.errors = list(errors)
        super().__init__(message, detail={"errors": self.errors})


class TransportFailure(BuilderError):
    kind = "TransportFailure"
    status_code = 503


class ConcurrencyConflict(BuilderError):
    kind = "ConcurrencyConflict"
    status_code = 409

    def __init__(self, message: str, *, retry_after: float = 1.0) -> None:
        self.retry_after = retry_after
        super().__init__(message, detail={"retry_after": retry_after})


# -----------------------------
# HTTP mapping
# -----------------------------
def error_response(exc: BuilderError) -> JSONResponse:
    headers = {}
    if isinstance(exc, ConcurrencyConflict):
        headers["Retry-After"] = str(max(1, int(round(exc.retry_after))))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers or None)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BuilderError)
    async def handle_builder_error(request: Request, exc: BuilderError):
        return error_response(exc)

    @app.exception_handler(OperationalError)
    async def handle_storage_down(request: Request, exc: OperationalError):
        logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
        return error_response(TransportFailure("Storage is unavailable, retry later"))

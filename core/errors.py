from typing import Any, Dict, Optional

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse


class StoreEngineError(Exception):
    """Base error for store lifecycle, quota and discount operations.

    ``code`` is stable for clients, ``message`` is human readable and
    ``meta`` carries safe-to-expose context (ids, limits).
    """

    status_code = 500
    default_code = "store.error"

    def __init__(self, message: str, *, code: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.meta = dict(meta or {})

    def to_public_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.meta:
            payload["meta"] = self.meta
        return payload


class NotFoundError(StoreEngineError):
    status_code = 404
    default_code = "resource.not_found"


class ValidationError(StoreEngineError):
    status_code = 422
    default_code = "request.validation_error"


class QuotaExceededError(StoreEngineError):
    status_code = 409
    default_code = "store.quota_exceeded"


class StateError(StoreEngineError):
    status_code = 409
    default_code = "store.invalid_state"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreEngineError)
    async def _store_engine_error_handler(request: Request, exc: StoreEngineError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_public_dict())

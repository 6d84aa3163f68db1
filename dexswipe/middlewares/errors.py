"""Maps storage failures to 503 and logs everything else that escapes a handler."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware


class ErrorsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        try:
            return await call_next(request)
        except SQLAlchemyError as exc:
            logger.exception("Storage error on {path}: {error}", path=request.url.path, error=exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"error": "storage_unavailable"},
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error on {path}: {error}", path=request.url.path, error=exc)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "internal_error"},
            )


__all__ = ["ErrorsMiddleware"]

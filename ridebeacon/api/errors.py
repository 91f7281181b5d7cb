"""
Exception handlers.

Every error leaves the API as ``{"error": <reason>, "detail": <message>}``
where ``reason`` is machine-stable and ``detail`` is for humans.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ridebeacon.domain.exceptions import RideBeaconError, UpstreamTimeout

logger = logging.getLogger(__name__)


def error_body(reason: str, detail: str) -> dict[str, str]:
    return {"error": reason, "detail": detail}


async def domain_error_handler(request: Request, exc: RideBeaconError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.reason)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.reason, exc.message))


async def store_timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Store call timed out on %s: %r", request.url.path, exc)
    return await domain_error_handler(request, UpstreamTimeout("Database did not answer in time"))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content=error_body("validation_error", problems))


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    reason = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(reason, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500, content=error_body("internal_error", "Internal server error")
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideBeaconError, domain_error_handler)
    for timeout in (PoolTimeoutError, asyncio.TimeoutError, TimeoutError):
        app.add_exception_handler(timeout, store_timeout_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

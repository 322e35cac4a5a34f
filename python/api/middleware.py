"""
Middleware and error handlers for the Conflict Check API

Every error leaves the API in the same envelope:
    {"error": {"code", "message", "field"?, "suggestion"?, "timestamp"}}
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Type

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from conflict_models import InvalidCaseInputError
from database.repositories import RepositoryError
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

LOCAL_ORIGINS = [
    f"http://{host}:{port}"
    for host in ("localhost", "127.0.0.1")
    for port in (3000, 5173, 8000)
]

# error class -> (status, code, client-facing message or None to use str(exc))
DOMAIN_ERRORS: Dict[Type[Exception], Tuple[int, str, Optional[str]]] = {
    InvalidCaseInputError: (422, "INVALID_CASE_INPUT", None),
    RepositoryError: (503, "STORAGE_ERROR", "Case storage is unavailable. Please try again later."),
    ConfigurationError: (503, "CONFIGURATION_ERROR", "Service configuration is invalid. Please contact administrator."),
}

CASE_INPUT_HINT = ("Party types are 'legal' or 'individual'; affiliate categories are "
                   "related_companies, related_individuals, founders, directors, beneficiaries")


def setup_cors(app: FastAPI) -> None:
    """Allow the intake UI origins (CORS_ORIGINS, comma separated, or localhost ports)"""
    configured = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured or LOCAL_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Processing-Time-MS"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and stamps X-Request-ID / X-Processing-Time-MS on the response."""

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(time.time_ns())
        request.state.request_id = request_id
        safe_id = sanitize_for_logging(request_id)

        logger.info("%s %s [%s]", request.method, sanitize_for_logging(request.url.path), safe_id)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("Request %s failed after %dms: %s", safe_id,
                         (time.perf_counter() - started) * 1000, sanitize_for_logging(str(exc)))
            raise

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(elapsed_ms)
        logger.info("Request %s -> %d in %dms", safe_id, response.status_code, elapsed_ms)
        return response


def error_response(status_code: int, code: str, message: str,
                   field: Optional[str] = None, suggestion: Optional[str] = None) -> JSONResponse:
    detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        detail["field"] = field
    if suggestion:
        detail["suggestion"] = suggestion
    return JSONResponse(status_code=status_code, content={"error": detail})


def _request_id(request: Request) -> str:
    return sanitize_for_logging(getattr(request.state, "request_id", "unknown"))


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Known engine errors; the message is only echoed for input errors"""
    for error_class, (status_code, code, message) in DOMAIN_ERRORS.items():
        if isinstance(exc, error_class):
            break
    else:
        return await unhandled_error_handler(request, exc)

    logger.error("%s [%s]: %s", type(exc).__name__, _request_id(request), sanitize_for_logging(str(exc)))
    if isinstance(exc, InvalidCaseInputError):
        return error_response(status_code, code, str(exc), field=exc.field_name, suggestion=CASE_INPUT_HINT)
    return error_response(status_code, code, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled %s [%s]", type(exc).__name__, _request_id(request))
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred. Please try again later.")


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP %d [%s]: %s", exc.status_code, _request_id(request),
                   sanitize_for_logging(str(exc.detail)))
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(exc.status_code, f"HTTP_{exc.status_code}", message)


def setup_exception_handlers(app: FastAPI) -> None:
    # registered per class so they are handled before the server error middleware
    for error_class in DOMAIN_ERRORS:
        app.add_exception_handler(error_class, domain_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

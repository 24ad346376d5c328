import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.src.core.errors import AppError, RateLimitedError
from backend.src.core.logging import get_request_id

logger = logging.getLogger(__name__)


def error_body(status_code: int, code: str, message: str, details=None) -> dict:
    error = {"status": status_code, "code": code, "message": message, "requestId": get_request_id()}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


async def app_error_handler(request: Request, exc: AppError):
    context = " ".join(f"{k}={v}" for k, v in exc.context.items())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s %s -> %s %s: %s %s", request.method, request.url.path, exc.status_code, type(exc).__name__, exc.message, context)

    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.code, exc.message),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, "http_error", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("%s %s -> 422 invalid request: %s", request.method, request.url.path, exc.errors())
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=error_body(422, "validation_error", "Invalid request body", details),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("%s %s -> 500 unhandled %s", request.method, request.url.path, type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "internal_error", "Internal Server Error"),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

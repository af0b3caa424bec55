from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_api_logger_safe, get_error_logger_safe
from core.utils.exceptions import SmartDeskException, create_error_context

logger = get_api_logger_safe("api.middleware.error_handling")
error_logger = get_error_logger_safe("api.errors")


def error_body(message: str, **extra) -> dict:
    body = {"success": False, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


async def smartdesk_exception_handler(request: Request, exc: SmartDeskException):
    level = error_logger.error if exc.status_code >= 500 else logger.warning
    level("Request failed",
          status_code=exc.status_code,
          **create_error_context(exc, f"{request.method} {request.url.path}"))
    field = getattr(exc, "field", None)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, field=field))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request"
    logger.info("Request validation failed", path=request.url.path, error=message)
    return JSONResponse(status_code=400, content=error_body(message))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)),
                        headers=getattr(exc, "headers", None))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SmartDeskException, smartdesk_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort handler for exceptions no handler claimed"""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            error_logger.error(
                "Unhandled API exception",
                exc_info=True,
                **create_error_context(e, f"{request.method} {request.url.path}")
            )
            return JSONResponse(status_code=500, content=error_body("Internal server error"))

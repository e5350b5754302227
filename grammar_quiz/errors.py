import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class QuizAppError(RuntimeError):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(QuizAppError):
    status_code = 401


class ValidationError(QuizAppError):
    status_code = 400


class GenerationError(QuizAppError):
    status_code = 500


class PersistenceError(QuizAppError):
    status_code = 500


def error_envelope(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        parts.append(f"{location}: {err.get('msg', 'invalid value')}" if location else err.get("msg", "invalid value"))
    return "Invalid request: " + "; ".join(parts) if parts else "Invalid request"


def register_error_handlers(app: FastAPI):
    @app.exception_handler(QuizAppError)
    async def handle_quiz_app_error(request: Request, exc: QuizAppError):
        logger.warning("%s %s failed with %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
        return error_envelope(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        logger.warning("%s %s returned %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
        return error_envelope(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        message = _describe_validation_errors(exc)
        logger.warning("%s %s rejected: %s", request.method, request.url.path, message)
        return error_envelope(ValidationError.status_code, message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error in %s %s", request.method, request.url.path)
        return error_envelope(500, "Internal server error")

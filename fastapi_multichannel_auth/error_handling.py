"""Translation of authentication errors into JSON responses."""

from fastapi import FastAPI, Request  # type: ignore[import-untyped]
from fastapi.responses import JSONResponse  # type: ignore[import-untyped]

from fastapi_multichannel_auth.exceptions import AuthError, StorageError
from fastapi_multichannel_auth.logging import get_logger

logger = get_logger(__name__)


def error_response(exc: AuthError) -> JSONResponse:
    message = "Internal server error" if isinstance(exc, StorageError) else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": message, "code": exc.error_code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Install the handler that turns every `AuthError` into its HTTP response.

    Example:
        ```python
        app = FastAPI()
        register_exception_handlers(app)
        app.include_router(get_auth_router(get_auth_service), prefix="/auth")
        ```
    """

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "auth_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return error_response(exc)

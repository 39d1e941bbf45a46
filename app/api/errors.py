import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import AppError

logger = logging.getLogger(__name__)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors as {"error": code, "detail": ..., **extra}."""
    if exc.status_code >= 500:
        logger.warning(
            "request_failed",
            extra={"path": request.url.path, "method": request.method, "status_code": exc.status_code, "error": exc.code},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)

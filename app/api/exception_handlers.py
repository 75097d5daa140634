# app/api/exception_handlers.py

from typing import TYPE_CHECKING
from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from sqlalchemy.exc import OperationalError, InterfaceError
from exceptions.domain_exceptions import DomainException, TransportException
import logging

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """
    Global exception handler for domain exceptions in FastAPI

    Returns a consistent JSON response format for all domain exceptions
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.__class__.__name__,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path
        }
    )


async def transport_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Render an unreachable Redis or database as a retryable TransportException
    """
    logger.error(f"Backing store unavailable on {request.url.path}: {exc}")
    transport_exc = TransportException(
        message="Service temporarily unavailable",
        details={"cause": exc.__class__.__name__}
    )
    return await domain_exception_handler(request, transport_exc)


def register_exception_handlers(app: "FastAPI") -> None:
    """
    Register all domain exception handlers with FastAPI app

    Usage:
        from api.exception_handlers import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(DomainException, domain_exception_handler)

    for exc_class in (RedisConnectionError, RedisTimeoutError, OperationalError, InterfaceError):
        app.add_exception_handler(exc_class, transport_error_handler)

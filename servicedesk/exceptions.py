import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


class ServiceError(HTTPException):
    """Base for domain errors raised by the service layer.

    Subclasses fix the HTTP status and a machine-readable ``code`` so route
    handlers can let them propagate untouched.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, detail: str, code: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail)
        if code is not None:
            self.code = code


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidInputError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class InvalidTransitionError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_transition"


class AlreadyResolvedError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_resolved"


class AlreadyJustifiedError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_justified"


class UnauthorizedError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


async def _conflict_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.warning("Concurrent update rejected on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": "The resource was modified concurrently. Reload and retry.",
            "code": ConflictError.code,
        },
    )


async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "internal_error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(StaleDataError, _conflict_handler)
    app.add_exception_handler(IntegrityError, _conflict_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)

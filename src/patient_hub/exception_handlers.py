"""Global exception handlers for the FastAPI application.

This module contains custom exception handlers that convert
application exceptions into proper HTTP responses.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from patient_hub.exceptions import PatientValidationError, PersistenceError, ResourceNotFoundError


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance
    """

    @app.exception_handler(PatientValidationError)
    async def patient_validation_handler(_request: Request, exc: PatientValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "errors": exc.errors},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_handler(_request: Request, exc: PersistenceError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    @app.exception_handler(ResourceNotFoundError)
    async def not_found_handler(_request: Request, exc: ResourceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    logger.debug("Registered exception handlers")

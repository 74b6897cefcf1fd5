"""Map domain errors onto HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from backend.app.core.errors import ReservationError, SlotTaken
from backend.app.core.logger_config import custom_logger


async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    if exc.status_code >= 500:
        custom_logger.exception(f"{type(exc).__name__}: {exc.message}")
    else:
        custom_logger.info(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def slot_taken_handler(request: Request, exc: SlotTaken) -> JSONResponse:
    custom_logger.info(f"SlotTaken: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.message, "alternatives": exc.alternatives}},
    )


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    custom_logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


EXCEPTION_HANDLERS = {
    SlotTaken: slot_taken_handler,
    ReservationError: reservation_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)

from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.core.config import settings
from backend.app.core.exception_handlers import register_exception_handlers
from backend.app.core.logger_config import custom_logger
from backend.app.core.redis_client import close_redis, init_redis
import backend.app.routers.automations as automations
import backend.app.routers.availability as availability
import backend.app.routers.health as health
import backend.app.routers.reservations as reservations
import backend.app.routers.seats as seats


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_redis()
    custom_logger.info("Seat reservation API started")
    try:
        yield
    finally:
        await close_redis()


app = FastAPI(
    title="Seat Reservation API",
    lifespan=lifespan,
)
register_exception_handlers(app)

app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(availability.router, prefix=settings.API_PREFIX)
app.include_router(reservations.router, prefix=settings.API_PREFIX)
app.include_router(seats.router, prefix=settings.API_PREFIX)
app.include_router(automations.router, prefix=settings.API_PREFIX)

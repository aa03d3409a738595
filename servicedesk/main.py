import asyncio
import contextlib
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from servicedesk.api.routes import auth, dashboard, delays, notifications, sla, tickets, time_entries
from servicedesk.config import settings
from servicedesk.exceptions import register_exception_handlers
from servicedesk.tasks.sla_checker import check_sla_breaches

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.jwt_secret == "change-me-in-production":
        logger.warning(
            "JWT_SECRET is set to the default value. "
            "Set a strong secret in your .env file."
        )
    sla_task = None
    if settings.sla_sweep_enabled:
        sla_task = asyncio.create_task(check_sla_breaches())
    yield
    if sla_task is not None:
        sla_task.cancel()
        try:
            await sla_task
        except asyncio.CancelledError:
            pass


def create_app() -> FastAPI:
    app = FastAPI(title="Service Desk", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(tickets.router, prefix="/api/v1/tickets", tags=["tickets"])
    app.include_router(time_entries.router, prefix="/api/v1/time-entries", tags=["time-entries"])
    app.include_router(sla.router, prefix="/api/v1/sla", tags=["sla"])
    app.include_router(delays.router, prefix="/api/v1/delays", tags=["delays"])
    app.include_router(dashboard.router, prefix="/api/v1/dashboard", tags=["dashboard"])
    app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()

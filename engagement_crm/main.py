# engagement_crm/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from engagement_crm.api.routes import analytics, health, internal, webhooks
from engagement_crm.core.config import get_settings
from engagement_crm.core.errors import EngagementError
from engagement_crm.db.session import IS_TEST, init_db_for_startup

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not IS_TEST:  # pragma: no cover
        await init_db_for_startup()
    logger.info("%s started", app.title)
    yield


async def engagement_error_handler(request: Request, exc: EngagementError) -> JSONResponse:
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_payload())


def create_app() -> FastAPI:
    """
    Application factory for the Engagement CRM service.
    """
    settings = get_settings()
    _configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Tracks video-meeting lifecycles from provider webhooks, reconciles\n"
            "raw join/leave events into attendance, computes engagement analytics\n"
            "per organizer and dispatches post-meeting surveys and missed-meeting\n"
            "messages."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(EngagementError, engagement_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(analytics.router)
    app.include_router(internal.router)

    return app


app = create_app()

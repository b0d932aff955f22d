import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import get_settings


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    app.add_event_handler("startup", _validate_calendar_configuration)

    return app


def _validate_calendar_configuration() -> None:
    settings = get_settings()
    if not settings.strict_startup_checks:
        if not settings.has_google_credentials():
            logger.warning("Google Calendar OAuth client is not configured")
        return
    settings.require_google_credentials()
    if not settings.google_calendar_refresh_token.strip():
        logger.warning(
            "GOOGLE_CALENDAR_REFRESH_TOKEN is not set; complete the authorization flow at %s/auth/google/url",
            settings.api_prefix,
        )
    logger.info(
        "Calendar configuration loaded calendar_id=%s timezone=%s token_store=%s",
        settings.google_calendar_id,
        settings.company_timezone,
        settings.token_store,
    )


app = create_application()

"""
FastAPI application entry point for the critical alert dispatch service.

Run with:
    sosalert-server                     (HOST, PORT, WORKERS, RELOAD from settings)
    uvicorn sosalert.app.main:app --port 8000

Configuration comes from the environment / .env (see core.config):
RECORD_STORE=memory|database, PUSH_PROVIDER=simulation|fcm.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sosalert.app.alerts.dispatcher import build_dispatcher
from sosalert.app.api.probes import router as probe_router
from sosalert.app.api.v1.alerts import router as alert_router
from sosalert.app.core.config import settings
from sosalert.app.core.database import close_db, init_db
from sosalert.app.core.errors import register_error_handlers
from sosalert.app.core.logging_config import get_logger, setup_logging
from sosalert.app.core.middleware import RequestLoggingMiddleware

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the dispatcher on startup; close its transport and DB pool on shutdown."""
    uses_database = settings.RECORD_STORE.lower() == "database"
    logger.info(
        "Starting %s v%s [%s] store=%s push=%s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.RECORD_STORE, settings.PUSH_PROVIDER,
    )
    if uses_database and settings.is_development:
        await init_db()

    app.state.dispatcher = build_dispatcher()
    try:
        yield
    finally:
        logger.info("Shutting down %s", settings.APP_NAME)
        await app.state.dispatcher.close()
        if uses_database:
            await close_db()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Critical alert dispatch. Resolves a student's assigned responders, "
            "looks up their push tokens and delivers one high-priority data "
            "message that rings an alarm on each responder device."
        ),
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # Added last runs first: request logging wraps CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(application)
    application.include_router(probe_router)
    application.include_router(alert_router)
    return application


app = create_app()


def run() -> None:
    """Serve `app` with uvicorn using the server settings."""
    uvicorn.run(
        "sosalert.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        reload=settings.RELOAD,
        log_config=None,  # keep setup_logging handlers
    )


if __name__ == "__main__":
    run()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from token_manager.api import health_router, tokens_router
from token_manager.config import Settings, get_settings
from token_manager.observability.logging import configure_logging
from token_manager.observability.middleware import RequestContextMiddleware
from token_manager.observability.otel import configure_otel
from token_manager.orchestration.factory import build_orchestrator
from token_manager.storage.database import build_engine, build_session_maker, init_db

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    engine = build_engine(settings.database_url, echo=settings.debug)
    session_maker = build_session_maker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting token manager for %s via %s", settings.beam_id, settings.beam_url)
        await init_db(engine)
        logger.info("Database setup complete")
        orchestrator = build_orchestrator(settings, session_maker)
        app.state.orchestrator = orchestrator

        yield

        logger.info("Shutting down, waiting for %d background operation(s)", orchestrator.pending)
        await orchestrator.drain()
        await orchestrator.dispatcher.broker.close()
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Issues Opal tokens at bridgeheads through the beam broker",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.session_maker = session_maker
    configure_otel(app, engine, settings)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health_router)
    app.include_router(tokens_router)

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


configure_logging()
app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "token_manager.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

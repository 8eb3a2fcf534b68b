# shopsync/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from shopsync.api.deps import get_engine
from shopsync.api.v1.endpoints import webhook
from shopsync.core.config import settings
from shopsync.core.logging import setup_logging
from shopsync.database import create_tables
from shopsync.engine import SyncEngine, build_engine
from shopsync.schemas.webhook import HealthResponse

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    create_tables()

    sync_engine = build_engine(settings)
    app.state.sync_engine = sync_engine
    await sync_engine.start()
    try:
        yield
    finally:
        await sync_engine.stop()
        app.state.sync_engine = None

def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Local store synchronization with POS and cloud backends",
        version=settings.VERSION,
        lifespan=lifespan_handler
    )

    # Подключаем роутеры
    app.include_router(webhook.router)

    @app.get("/health", response_model=HealthResponse)
    async def health(engine: SyncEngine = Depends(get_engine)):
        try:
            engine.store.session.execute(text("SELECT 1"))
            database = "connected"
        except SQLAlchemyError:
            database = "unavailable"

        return HealthResponse(
            status="ok" if database == "connected" else "degraded",
            service="shopsync",
            database=database,
            cloud_reachable=engine.monitor.is_reachable,
            sync=engine.orchestrator.snapshot()
        )

    return app

app = create_app()

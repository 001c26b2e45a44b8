import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from bulkops.api.v1.metrics import router as metrics_router
from bulkops.api.v1.operations import router as operations_router
from bulkops.db.session import AsyncSessionLocal, create_all
from bulkops.handlers import build_default_registry
from bulkops.services.engine import BulkOperationEngine
from bulkops.settings import settings
from bulkops.store import InMemoryOperationStore, SqlOperationStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

async def build_engine_from_settings() -> BulkOperationEngine:
    if settings.CREATE_TABLES_ON_STARTUP:
        await create_all()

    if settings.STORE_BACKEND == "memory":
        logger.warning("Using the in-memory operation store; records are lost on restart")
        store = InMemoryOperationStore()
    else:
        store = SqlOperationStore(AsyncSessionLocal)

    # Built-in handlers always write to the database
    registry = build_default_registry(AsyncSessionLocal)
    return BulkOperationEngine(store, registry)

def create_app(engine: Optional[BulkOperationEngine] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if getattr(app.state, "engine", None) is None:
            app.state.engine = await build_engine_from_settings()
        await app.state.engine.start()

        yield

        # Shutdown
        await app.state.engine.stop()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )
    app.state.engine = engine

    app.include_router(operations_router, prefix="/api/v1/operations", tags=["operations"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app

app = create_app()

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from kinsync.api.endpoints import get_endpoints_router
from kinsync.store.watcher import VaultWatcher
from kinsync.sync.orchestrator import SyncOrchestrator


def create_app(
    *,
    orchestrator: SyncOrchestrator,
    watcher: VaultWatcher | None = None,
) -> FastAPI:
    """Create FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        result = await orchestrator.initialize()
        logger.info(
            f"Initialized {result.processed} contacts, repaired {result.repaired} reciprocals"
        )
        if watcher is not None:
            await watcher.start()
        try:
            yield
        finally:
            if watcher is not None:
                await watcher.stop()
            await orchestrator.shutdown()

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router=get_endpoints_router(orchestrator=orchestrator))

    return app

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from kinsync.api.auth import verify_credentials
from kinsync.domain.relationships import BatchResult, GraphStats, RelationshipEdge, SyncResult
from kinsync.sync.orchestrator import SyncOrchestrator


def _create_relationships_endpoint(orchestrator: SyncOrchestrator):
    """Create the endpoint listing a contact's relationships."""

    async def get_relationships(
        path: str,
        _: str = Depends(verify_credentials),
    ) -> list[RelationshipEdge]:
        contact = orchestrator.graph.by_path(path)
        if contact is None:
            logger.warning(f"No contact loaded for {path}")
            raise HTTPException(status_code=404, detail="Contact not found")
        return orchestrator.graph.edges_of(contact.id)

    return get_relationships


def _create_sync_markdown_endpoint(orchestrator: SyncOrchestrator):
    """Create the markdown -> frontmatter sync endpoint."""

    async def sync_markdown(
        path: str,
        replace: bool = False,
        _: str = Depends(verify_credentials),
    ) -> SyncResult:
        logger.info(f"Syncing {path} from its Related list (replace={replace})")
        return await orchestrator.sync_from_markdown(path, replace=replace, debounce=False)

    return sync_markdown


def _create_sync_frontmatter_endpoint(orchestrator: SyncOrchestrator):
    """Create the frontmatter -> markdown sync endpoint."""

    async def sync_frontmatter(
        path: str,
        _: str = Depends(verify_credentials),
    ) -> SyncResult:
        logger.info(f"Syncing {path} from its frontmatter")
        return await orchestrator.sync_from_frontmatter(path)

    return sync_frontmatter


def get_endpoints_router(*, orchestrator: SyncOrchestrator) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @router.get("/api/graph/stats")
    async def graph_stats(_: str = Depends(verify_credentials)) -> GraphStats:
        return orchestrator.get_graph_stats()

    @router.post("/api/contacts/sync-all")
    async def sync_all(_: str = Depends(verify_credentials)) -> BatchResult:
        result = await orchestrator.sync_all()
        logger.info(f"Synced {result.processed} contacts with {len(result.errors)} errors")
        return result

    @router.post("/api/consistency")
    async def ensure_consistency(_: str = Depends(verify_credentials)) -> BatchResult:
        return await orchestrator.ensure_consistency()

    router.get("/api/contacts/relationships")(_create_relationships_endpoint(orchestrator))
    router.post("/api/contacts/sync-markdown")(_create_sync_markdown_endpoint(orchestrator))
    router.post("/api/contacts/sync-frontmatter")(_create_sync_frontmatter_endpoint(orchestrator))

    return router

import logging
from fastapi import APIRouter, Depends, HTTPException
from app.container import Container
from api.deps import get_container

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/vector-db/health")
async def vector_db_health(container: Container = Depends(get_container)):
    try:
        stats = await container.retriever.stats()
    except Exception as exc:
        logger.warning("Vector store health check failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))
    return {
        "status": "ok",
        "collection": container.settings.QDRANT_COLLECTION,
        "points_count": stats.point_count,
        "segments_count": stats.segment_count,
        "collection_status": stats.status,
    }

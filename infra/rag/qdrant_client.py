import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from app.settings import Settings
from domain.errors import CollectionNotInitialized
from infra.retry import execute_with_retry

logger = logging.getLogger(__name__)

ORIGINAL_ID_KEY = "original_id"
PAYLOAD_INDEXES = ("document_id", "document_type", ORIGINAL_ID_KEY)
# logical filter keys that live under a different payload key
FILTER_KEY_ALIASES = {"id": ORIGINAL_ID_KEY, "chunk_id": ORIGINAL_ID_KEY}
DISTANCES = {"cosine": Distance.COSINE, "dot": Distance.DOT, "euclid": Distance.EUCLID}


@dataclass
class IndexPoint:
    id: str
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    id: str
    score: float
    payload: Dict[str, Any]


@dataclass
class IndexStats:
    point_count: int
    segment_count: int
    status: str


def point_uuid(app_id: str) -> str:
    """Qdrant only accepts unsigned ints or UUIDs as point ids."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, app_id))


def build_filter(conditions: Optional[Dict[str, Any]]) -> Optional[Filter]:
    if not conditions:
        return None
    must = []
    for key, value in conditions.items():
        key = FILTER_KEY_ALIASES.get(key, key)
        if isinstance(value, (list, tuple, set)):
            match = MatchAny(any=[str(v) for v in value])
        else:
            match = MatchValue(value=value)
        must.append(FieldCondition(key=key, match=match))
    return Filter(must=must)


class QdrantIndex:
    """Similarity index over a single Qdrant collection."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection: str = "ground_truth_docs",
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 5.0,
    ):
        self.client = client
        self.collection = collection
        self._retry = dict(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)

    @classmethod
    def from_settings(cls, settings: Settings) -> "QdrantIndex":
        client = AsyncQdrantClient(
            url=settings.QDRANT_URL,
            api_key=settings.QDRANT_API_KEY or None,
            timeout=settings.QDRANT_TIMEOUT,
        )
        return cls(client, settings.QDRANT_COLLECTION)

    async def close(self) -> None:
        await self.client.close()

    async def _run(self, operation_name: str, operation):
        async def guarded():
            try:
                return await operation()
            except UnexpectedResponse as exc:
                if exc.status_code == 404:
                    raise CollectionNotInitialized(
                        f"Collection '{self.collection}' is not initialized") from exc
                raise

        return await execute_with_retry(guarded, operation_name=operation_name, **self._retry)

    async def ensure_collection(self, dimension: int = 1536, distance: str = "cosine") -> bool:
        """Create the collection if missing. Returns True when it was created."""
        async def op():
            if await self.client.collection_exists(self.collection):
                return False
            logger.info("Creating collection '%s' (dim=%d, distance=%s)", self.collection, dimension, distance)
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=dimension, distance=DISTANCES[distance.lower()]),
            )
            for field_name in PAYLOAD_INDEXES:
                await self.client.create_payload_index(
                    collection_name=self.collection,
                    field_name=field_name,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            return True

        return await self._run("ensure collection", op)

    async def upsert(self, points: List[IndexPoint]) -> None:
        if not points:
            return
        structs = [
            PointStruct(
                id=point_uuid(p.id),
                vector=p.vector,
                payload={**p.payload, ORIGINAL_ID_KEY: p.id},
            )
            for p in points
        ]

        async def op():
            await self.client.upsert(collection_name=self.collection, points=structs, wait=True)

        await self._run("upsert points", op)
        logger.info("Upserted %d points into '%s'", len(points), self.collection)

    async def search(
        self,
        query_vector: List[float],
        *,
        limit: int = 6,
        filter: Optional[Dict[str, Any]] = None,
        score_threshold: Optional[float] = None,
    ) -> List[SearchHit]:
        q_filter = build_filter(filter)

        async def op():
            return await self.client.query_points(
                collection_name=self.collection,
                query=query_vector,
                limit=limit,
                query_filter=q_filter,
                score_threshold=score_threshold,
                with_payload=True,
                with_vectors=False,
            )

        response = await self._run("vector search", op)
        hits = [
            SearchHit(
                id=str((p.payload or {}).get(ORIGINAL_ID_KEY) or p.id),
                score=float(p.score),
                payload=dict(p.payload or {}),
            )
            for p in response.points
        ]
        logger.info("Vector search returned %d hits (limit=%d, filter=%s)", len(hits), limit, filter)
        return hits

    async def delete_by_filter(self, filter: Dict[str, Any]) -> None:
        q_filter = build_filter(filter)
        if q_filter is None:
            raise ValueError("delete_by_filter requires at least one condition")

        async def op():
            await self.client.delete(
                collection_name=self.collection,
                points_selector=FilterSelector(filter=q_filter),
                wait=True,
            )

        await self._run("delete points", op)
        logger.info("Deleted points from '%s' matching %s", self.collection, filter)

    async def existing_ids(self, ids: Iterable[str]) -> Set[str]:
        ids = list(ids)
        if not ids:
            return set()

        async def op():
            return await self.client.retrieve(
                collection_name=self.collection,
                ids=[point_uuid(i) for i in ids],
                with_payload=[ORIGINAL_ID_KEY],
                with_vectors=False,
            )

        records = await self._run("retrieve points", op)
        return {str((r.payload or {}).get(ORIGINAL_ID_KEY)) for r in records}

    async def stats(self) -> IndexStats:
        info = await self._run("collection stats", lambda: self.client.get_collection(self.collection))
        status = getattr(info.status, "value", info.status)
        return IndexStats(
            point_count=info.points_count or 0,
            segment_count=info.segments_count or 0,
            status=str(status or "unknown"),
        )

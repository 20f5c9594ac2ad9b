import logging
from typing import Dict, List, Optional, Protocol

from domain.schemas import ContextSource, DocumentType, RetrievedContext
from infra.rag.qdrant_client import IndexStats, SearchHit

logger = logging.getLogger(__name__)

PROFILE_DOCUMENT_TYPES = [DocumentType.JOB_DESCRIPTION.value, DocumentType.CV_RUBRIC.value]
SUBMISSION_DOCUMENT_TYPES = [DocumentType.CASE_BRIEF.value, DocumentType.PROJECT_RUBRIC.value]
DEFAULT_SCORE_THRESHOLD = 0.7
SELF_TEST_QUERY = "Evaluate technical skills and experience level"


class Embedder(Protocol):
    async def embed_one(self, text: str) -> List[float]: ...


class SimilarityIndex(Protocol):
    async def search(self, query_vector: List[float], *, limit: int = 6,
                     filter: Optional[Dict] = None,
                     score_threshold: Optional[float] = None) -> List[SearchHit]: ...

    async def stats(self) -> IndexStats: ...


class ContextRetriever:
    def __init__(self, embedder: Embedder, index: SimilarityIndex,
                 score_threshold: float = DEFAULT_SCORE_THRESHOLD):
        self.embedder = embedder
        self.index = index
        self.score_threshold = score_threshold

    async def _retrieve(self, stage: str, query: str, top_k: int,
                        document_types: Optional[List[str]]) -> RetrievedContext:
        qvec = await self.embedder.embed_one(query)
        flt = {"document_type": document_types} if document_types else None
        hits = await self.index.search(qvec, limit=top_k, filter=flt, score_threshold=self.score_threshold)
        # the index applies the threshold too; keep the contract even if it does not
        hits = [h for h in hits if h.score >= self.score_threshold]

        context = "\n\n".join(h.payload.get("chunk_text", "") for h in hits)
        sources = [
            ContextSource(
                document_type=h.payload.get("document_type"),
                chunk_text=h.payload.get("chunk_text", ""),
                score=h.score,
            )
            for h in hits
        ]
        logger.info("%s context retrieved: %d chunks, %d chars (query=%r)",
                    stage, len(sources), len(context), query[:100])
        return RetrievedContext(context=context, sources=sources)

    async def retrieve_profile_context(self, query: str, top_k: int = 6) -> RetrievedContext:
        return await self._retrieve("Profile", query, top_k, PROFILE_DOCUMENT_TYPES)

    async def retrieve_submission_context(self, query: str, top_k: int = 6) -> RetrievedContext:
        return await self._retrieve("Submission", query, top_k, SUBMISSION_DOCUMENT_TYPES)

    async def retrieve_synthesis_context(self, query: str, top_k: int = 4) -> RetrievedContext:
        return await self._retrieve("Synthesis", query, top_k, None)

    async def stats(self) -> IndexStats:
        return await self.index.stats()

    async def self_test(self, query: str = SELF_TEST_QUERY) -> Dict[str, RetrievedContext]:
        """Run every stage retrieval once with a sample query."""
        return {
            "profile": await self.retrieve_profile_context(query, 3),
            "submission": await self.retrieve_submission_context(query, 3),
            "synthesis": await self.retrieve_synthesis_context(query, 2),
        }

from collections import Counter
from typing import Dict, List, Tuple
from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker
from infra.db.session import SessionLocal
from infra.db.models import ChunkReferenceRecord, ReferenceDocumentRecord


class DocumentsRepository:
    """Queries over the ground-truth tables. Document writes go through the ingestion
    service, which owns the transaction boundaries."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def list(self) -> List[ReferenceDocumentRecord]:
        with self.session_factory() as s:
            return list(s.scalars(select(ReferenceDocumentRecord)
                                  .order_by(ReferenceDocumentRecord.created_at.desc())).all())

    def chunk_refs(self) -> List[Tuple[str, str]]:
        """(chunk_id, vector_ref) for every chunk reference."""
        with self.session_factory() as s:
            rows = s.execute(select(ChunkReferenceRecord.chunk_id, ChunkReferenceRecord.vector_ref)).all()
            return [(r.chunk_id, r.vector_ref) for r in rows]

    def delete_chunk_refs(self, chunk_ids: List[str]) -> int:
        if not chunk_ids:
            return 0
        with self.session_factory() as s:
            result = s.execute(delete(ChunkReferenceRecord)
                               .where(ChunkReferenceRecord.chunk_id.in_(chunk_ids)))
            s.commit()
            return result.rowcount or 0

    def stats(self) -> Dict:
        with self.session_factory() as s:
            types = s.scalars(select(ReferenceDocumentRecord.type)).all()
            total_chunks = s.scalar(select(func.count()).select_from(ChunkReferenceRecord)) or 0
        return {
            "total_documents": len(types),
            "total_chunks": total_chunks,
            "documents_by_type": dict(Counter(types)),
        }

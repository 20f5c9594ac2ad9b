import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain.chunking import chunk_text
from domain.errors import DocumentTypeConflict, DuplicateDocument, EmptyDocument, NotFoundError
from domain.schemas import DocumentType
from infra.db.models import ChunkReferenceRecord, ReferenceDocumentRecord
from infra.db.session import SessionLocal
from infra.pdf.parser import extract_text
from infra.rag.qdrant_client import IndexPoint
from infra.repositories.documents_repository import DocumentsRepository
from infra.retry import execute_with_retry
from infra.storage import read_bytes, sha256_hex

logger = logging.getLogger(__name__)

INGESTIBLE_SUFFIXES = (".pdf", ".txt", ".md")
RECONCILE_BATCH = 256


class BatchEmbedder(Protocol):
    async def embed_batch(self, texts: List[str]) -> List[List[float]]: ...


class WritableIndex(Protocol):
    async def upsert(self, points: List[IndexPoint]) -> None: ...

    async def delete_by_filter(self, filter: Dict) -> None: ...

    async def existing_ids(self, ids: List[str]) -> set: ...


@dataclass
class IngestionReport:
    documents: List[ReferenceDocumentRecord] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ReconcileReport:
    checked: int
    orphaned_chunk_ids: List[str]
    purged: bool


def infer_document_type(filename: str) -> Optional[DocumentType]:
    name = filename.lower()
    if "job" in name or "jd" in name:
        return DocumentType.JOB_DESCRIPTION
    if "case" in name or "brief" in name:
        return DocumentType.CASE_BRIEF
    if "cv" in name:
        return DocumentType.CV_RUBRIC
    if "project" in name:
        return DocumentType.PROJECT_RUBRIC
    return None


class DocumentIngestionService:
    """Loads ground-truth documents into the relational store and the
    similarity index.

    A document row is only committed together with its chunk references and
    after its vectors were written to the index.
    """

    def __init__(
        self,
        embedder: BatchEmbedder,
        index: WritableIndex,
        session_factory: sessionmaker = SessionLocal,
        *,
        extractor: Callable[[bytes, str], str] = extract_text,
        reader: Callable[[str], bytes] = read_bytes,
        chunk_size: int = 512,
        chunk_overlap: int = 64,
    ):
        self.embedder = embedder
        self.index = index
        self.session_factory = session_factory
        self.documents = DocumentsRepository(session_factory)
        self.extractor = extractor
        self.reader = reader
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _find_by_hash(session: Session, content_hash: str) -> Optional[ReferenceDocumentRecord]:
        return session.scalars(select(ReferenceDocumentRecord)
                               .where(ReferenceDocumentRecord.content_hash == content_hash)).first()

    @staticmethod
    def _reuse(existing: ReferenceDocumentRecord, document_type: str, file_path: str) -> ReferenceDocumentRecord:
        if existing.type != document_type:
            raise DocumentTypeConflict(
                f"{os.path.basename(file_path)} was already ingested as {existing.type} ({existing.id})")
        logger.info("Document %s already ingested with same content (hash=%s...), skipping",
                    existing.id, existing.content_hash[:8])
        return existing

    def _extract(self, data: bytes, file_path: str) -> str:
        text = self.extractor(data, file_path)
        if not text or not text.strip():
            raise EmptyDocument(f"{os.path.basename(file_path)} contains no extractable text")
        return text

    @staticmethod
    def _insert_document(session: Session, document: ReferenceDocumentRecord) -> None:
        try:
            session.add(document)
            session.flush()
        except Exception:
            # nothing but the lookup has happened in this transaction yet
            session.rollback()
            raise

    async def _embed_chunks(self, document: ReferenceDocumentRecord,
                            text: str) -> Tuple[List[IndexPoint], List[ChunkReferenceRecord]]:
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        vectors = await self.embedder.embed_batch(chunks)
        created_at = datetime.now(timezone.utc).isoformat()
        points, refs = [], []
        for i, (chunk, vector) in enumerate(zip(chunks, vectors)):
            # ids carry the content hash so two versions of a document never share points
            chunk_id = f"{document.id}_{document.content_hash[:8]}_{i}"
            points.append(IndexPoint(id=chunk_id, vector=vector, payload={
                "document_id": document.id,
                "document_type": document.type,
                "chunk_index": i,
                "chunk_text": chunk,
                "version": document.version,
                "created_at": created_at,
            }))
            refs.append(ChunkReferenceRecord(
                document_id=document.id, chunk_id=chunk_id, vector_ref=chunk_id,
                meta={"document_type": document.type, "chunk_index": i, "version": document.version},
            ))
        return points, refs

    async def _write_chunks(self, session: Session, points: List[IndexPoint],
                            refs: List[ChunkReferenceRecord]) -> None:
        # index first: a failed upsert must roll back the document row as well
        await self.index.upsert(points)
        session.add_all(refs)
        session.flush()

    async def _discard_points(self, point_ids: List[str]) -> None:
        if not point_ids:
            return
        try:
            await self.index.delete_by_filter({"id": point_ids})
        except Exception as exc:
            # the caller re-raises its own error; reconcile reports what is left behind
            logger.error("Could not remove %d index points written before the failure: %s",
                         len(point_ids), exc)

    # -- operations --------------------------------------------------------

    async def ingest(self, file_path: str, document_type: str,
                     version: str = "1.0") -> ReferenceDocumentRecord:
        document_type = DocumentType(document_type).value
        data = self.reader(file_path)
        content_hash = sha256_hex(data)
        logger.info("Ingesting %s as %s v%s", file_path, document_type, version)

        with self.session_factory() as session:
            existing = self._find_by_hash(session, content_hash)
            if existing is not None:
                return self._reuse(existing, document_type, file_path)

            written: List[str] = []
            try:
                text = self._extract(data, file_path)
                document = ReferenceDocumentRecord(
                    id=f"doc_{uuid.uuid4().hex}", type=document_type, version=version,
                    path=file_path, content_hash=content_hash,
                )
                try:
                    await execute_with_retry(
                        lambda: self._insert_document(session, document),
                        max_attempts=3, base_delay=0.5, max_delay=2.0,
                        operation_name="save document",
                    )
                except IntegrityError:
                    # a concurrent ingestion of the same bytes committed first
                    session.rollback()
                    winner = self._find_by_hash(session, content_hash)
                    if winner is None:
                        raise
                    return self._reuse(winner, document_type, file_path)

                points, refs = await self._embed_chunks(document, text)
                written = [p.id for p in points]
                await self._write_chunks(session, points, refs)
                session.commit()
            except Exception as exc:
                session.rollback()
                await self._discard_points(written)
                logger.error("Ingestion of %s failed, transaction rolled back: %s", file_path, exc)
                raise

        logger.info("Ingested document %s (%d chunks)", document.id, len(refs))
        return document

    async def ingest_directory(self, path: str) -> IngestionReport:
        """Ingest every supported file under ``path``; failures are collected,
        not raised, so one bad file does not block the others."""
        report = IngestionReport()
        for name in sorted(os.listdir(path)):
            if not name.lower().endswith(INGESTIBLE_SUFFIXES):
                continue
            document_type = infer_document_type(name)
            if document_type is None:
                report.failures.append((name, "could not infer document type from filename"))
                logger.warning("Skipping %s: unknown document type", name)
                continue
            try:
                document = await self.ingest(os.path.join(path, name), document_type.value)
            except Exception as exc:
                report.failures.append((name, str(exc)))
                logger.error("Failed to ingest %s: %s", name, exc)
                continue
            report.documents.append(document)

        logger.info("Directory %s processed: %d documents, %d failures",
                    path, len(report.documents), len(report.failures))
        if report.failures:
            logger.warning("Some files failed to ingest: %s", [f for f, _ in report.failures])
        return report

    async def update(self, document_id: str, new_file_path: str,
                     new_version: str) -> ReferenceDocumentRecord:
        data = self.reader(new_file_path)
        content_hash = sha256_hex(data)

        with self.session_factory() as session:
            document = session.get(ReferenceDocumentRecord, document_id)
            if document is None:
                raise NotFoundError(f"document {document_id} not found")
            clash = self._find_by_hash(session, content_hash)
            if clash is not None and clash.id != document.id:
                raise DuplicateDocument(f"content already ingested as document {clash.id}")

            logger.info("Updating document %s: v%s -> v%s (%s)",
                        document.id, document.version, new_version, new_file_path)
            old_ids = set(session.scalars(select(ChunkReferenceRecord.vector_ref)
                                          .where(ChunkReferenceRecord.document_id == document.id)).all())
            written: List[str] = []
            try:
                text = self._extract(data, new_file_path)
                document.version = new_version
                document.path = new_file_path
                document.content_hash = content_hash
                points, refs = await self._embed_chunks(document, text)
                session.execute(delete(ChunkReferenceRecord)
                                .where(ChunkReferenceRecord.document_id == document.id))
                written = [p.id for p in points]
                # the previous version stays searchable until its replacement is in the index
                await self._write_chunks(session, points, refs)
                stale = sorted(old_ids.difference(written))
                if stale:
                    await self.index.delete_by_filter({"id": stale})
                session.commit()
            except Exception as exc:
                session.rollback()
                await self._discard_points([i for i in written if i not in old_ids])
                logger.error("Update of document %s failed, transaction rolled back: %s", document_id, exc)
                raise

        logger.info("Document %s updated (%d chunks)", document.id, len(refs))
        return document

    async def delete(self, document_id: str) -> None:
        with self.session_factory() as session:
            document = session.get(ReferenceDocumentRecord, document_id)
            if document is None:
                raise NotFoundError(f"document {document_id} not found")
            try:
                await self.index.delete_by_filter({"document_id": document_id})
                session.delete(document)
                session.commit()
            except Exception as exc:
                session.rollback()
                logger.error("Failed to delete document %s, transaction rolled back: %s", document_id, exc)
                raise
        logger.info("Document %s deleted", document_id)

    def list_documents(self) -> List[ReferenceDocumentRecord]:
        return self.documents.list()

    def stats(self) -> Dict:
        return self.documents.stats()

    async def reconcile(self, purge: bool = False) -> ReconcileReport:
        """Find chunk references whose index entry is missing."""
        refs = self.documents.chunk_refs()
        present = set()
        for start in range(0, len(refs), RECONCILE_BATCH):
            batch = [vector_ref for _, vector_ref in refs[start:start + RECONCILE_BATCH]]
            present |= await self.index.existing_ids(batch)
        orphans = [chunk_id for chunk_id, vector_ref in refs if vector_ref not in present]
        if orphans:
            logger.warning("Found %d orphaned chunk references", len(orphans))
        if purge and orphans:
            self.documents.delete_chunk_refs(orphans)
        return ReconcileReport(checked=len(refs), orphaned_chunk_ids=orphans, purged=purge and bool(orphans))

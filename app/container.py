import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.settings import Settings, get_settings
from domain.services.document_ingestion import DocumentIngestionService
from domain.services.evaluation_pipeline import EvaluationPipeline
from infra.db.session import create_db_engine, create_session_factory, init_db
from infra.llm.client import LLMClient
from infra.queue.job_queue import JobQueue
from infra.rag.qdrant_client import QdrantIndex
from infra.rag.retriever import ContextRetriever
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    http: Optional[httpx.AsyncClient]
    llm: LLMClient
    index: QdrantIndex
    retriever: ContextRetriever
    files: FilesRepository
    jobs: JobsRepository
    ingestion: DocumentIngestionService
    pipeline: EvaluationPipeline
    queue: JobQueue

    async def start(self, resume_jobs: bool = True) -> None:
        init_db(self.engine)
        try:
            await self.index.ensure_collection(self.settings.EMBEDDING_DIMENSION)
        except Exception as exc:
            # health endpoint reports it; ingestion and evaluations fail until it is reachable
            logger.warning("Vector store not ready at startup: %s", exc)
        await self.queue.start()
        if resume_jobs:
            for job_id, attempts in self.jobs.resumable(self.settings.EVAL_MAX_ATTEMPTS):
                # continue the attempt count where the previous process left it
                await self.queue.enqueue(job_id, attempts + 1)

    async def aclose(self) -> None:
        await self.queue.stop()
        close = getattr(self.index, "close", None)
        if close is not None:
            await close()
        if self.http is not None:
            await self.http.aclose()


def build_container(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    http: Optional[httpx.AsyncClient] = None,
    llm=None,
    index=None,
) -> Container:
    """Wire every service from settings; any collaborator can be passed in
    instead (tests hand in fakes for the provider and the vector store)."""
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.database_url)
    session_factory = create_session_factory(engine)

    if llm is None:
        http = http or httpx.AsyncClient()
        llm = LLMClient.from_settings(settings, http)
    if index is None:
        index = QdrantIndex.from_settings(settings)

    files = FilesRepository(session_factory)
    jobs = JobsRepository(session_factory)
    retriever = ContextRetriever(llm, index, settings.RAG_SCORE_THRESHOLD)
    ingestion = DocumentIngestionService(
        llm, index, session_factory,
        chunk_size=settings.CHUNK_SIZE, chunk_overlap=settings.CHUNK_OVERLAP,
    )
    pipeline = EvaluationPipeline(jobs, files, retriever, llm)
    queue = JobQueue(
        pipeline.run,
        max_attempts=settings.EVAL_MAX_ATTEMPTS,
        backoff_ms=settings.EVAL_BACKOFF_MS,
        concurrency=settings.WORKER_CONCURRENCY,
    )
    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        http=http,
        llm=llm,
        index=index,
        retriever=retriever,
        files=files,
        jobs=jobs,
        ingestion=ingestion,
        pipeline=pipeline,
        queue=queue,
    )

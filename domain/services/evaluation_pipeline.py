import logging
from typing import Callable, Dict, List, Protocol, Type

from pydantic import BaseModel

from domain.errors import IncompleteStageHistory, MissingInputFiles, NotFoundError, TerminalError
from domain.schemas import (
    ARTIFACT_VERSION,
    CVEvaluationResult,
    FileKind,
    JobStatus,
    ProjectEvaluationResult,
    RetrievedContext,
    Stage,
    SynthesisResult,
)
from infra.db.models import FileRecord
from infra.llm.prompts import (
    CV_EVAL_SYSTEM_PROMPT,
    CV_EVAL_USER_PROMPT,
    FINAL_SUMMARY_SYSTEM_PROMPT,
    FINAL_SUMMARY_USER_PROMPT,
    PROJECT_EVAL_SYSTEM_PROMPT,
    PROJECT_EVAL_USER_PROMPT,
)
from infra.pdf.parser import extract_text
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository
from infra.storage import read_bytes

logger = logging.getLogger(__name__)

ERROR_CODE = "processing_error"
SYNTHESIS_QUERY = "Final candidate assessment and hiring recommendation"


class StageRetriever(Protocol):
    async def retrieve_profile_context(self, query: str, top_k: int = 6) -> RetrievedContext: ...

    async def retrieve_submission_context(self, query: str, top_k: int = 6) -> RetrievedContext: ...

    async def retrieve_synthesis_context(self, query: str, top_k: int = 4) -> RetrievedContext: ...


class StructuredCompleter(Protocol):
    async def complete_structured(self, messages: List[Dict[str, str]],
                                  schema: Type[BaseModel] = None) -> Dict: ...


class EvaluationPipeline:
    """Runs the three evaluation stages of one job.

    Stage A scores the CV, stage B the project report, stage C combines both
    into a summary. Every stage persists its payload as an artifact before the
    next one starts; the job only becomes ``completed`` once all three exist.
    """

    def __init__(
        self,
        jobs: JobsRepository,
        files: FilesRepository,
        retriever: StageRetriever,
        llm: StructuredCompleter,
        *,
        extractor: Callable[[bytes, str], str] = extract_text,
        reader: Callable[[str], bytes] = read_bytes,
    ):
        self.jobs = jobs
        self.files = files
        self.retriever = retriever
        self.llm = llm
        self.extractor = extractor
        self.reader = reader

    def _document_text(self, record: FileRecord) -> str:
        return self.extractor(self.reader(record.path), record.name or record.path)

    async def _generate(self, system_prompt: str, user_prompt: str, schema: Type[BaseModel]) -> Dict:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self.llm.complete_structured(messages, schema)

    async def run(self, job_id: str) -> None:
        job = self.jobs.get_record(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} not found")
        if job.status == JobStatus.COMPLETED.value:
            logger.info("Job %s already completed, skipping", job_id)
            return

        logger.info("=== Starting evaluation job %s (%s) ===", job_id, job.job_title)
        self.jobs.update_status(job_id, JobStatus.PROCESSING)
        try:
            cv_file = self.files.get(job.cv_file_id, FileKind.CV.value)
            report_file = self.files.get(job.report_file_id, FileKind.REPORT.value)
            if cv_file is None or report_file is None:
                raise MissingInputFiles(f"input files for job {job_id} not found")

            await self.evaluate_profile(job_id, job.job_title, cv_file)
            await self.evaluate_submission(job_id, job.job_title, report_file)
            await self.synthesize(job_id, job.job_title)
        except Exception as exc:
            logger.error("Evaluation of job %s failed: %s", job_id, exc)
            self.jobs.fail(job_id, ERROR_CODE, retryable=not isinstance(exc, TerminalError))
            raise

        self.jobs.update_status(job_id, JobStatus.COMPLETED)
        logger.info("=== Evaluation job %s completed ===", job_id)

    async def evaluate_profile(self, job_id: str, job_title: str, cv_file: FileRecord) -> Dict:
        logger.info("Job %s stage A: CV evaluation", job_id)
        cv_text = self._document_text(cv_file)
        logger.info("CV text length: %d chars", len(cv_text))

        query = (f"Evaluate CV for {job_title} position - technical skills, experience level, "
                 "achievements, and cultural fit")
        retrieved = await self.retriever.retrieve_profile_context(query, 6)

        payload = await self._generate(
            CV_EVAL_SYSTEM_PROMPT,
            CV_EVAL_USER_PROMPT.format(job_title=job_title, context=retrieved.context, cv_text=cv_text),
            CVEvaluationResult,
        )
        self.jobs.save_artifact(job_id, Stage.PROFILE, payload, ARTIFACT_VERSION)
        logger.info("Job %s stage A done: match_rate=%s sources=%d",
                    job_id, payload["cv_match_rate"], len(retrieved.sources))
        return payload

    async def evaluate_submission(self, job_id: str, job_title: str, report_file: FileRecord) -> Dict:
        logger.info("Job %s stage B: project evaluation", job_id)
        report_text = self._document_text(report_file)
        logger.info("Report text length: %d chars", len(report_text))

        query = (f"Evaluate project report for {job_title} position - correctness, code quality, "
                 "resilience, documentation, and creativity")
        retrieved = await self.retriever.retrieve_submission_context(query, 6)

        payload = await self._generate(
            PROJECT_EVAL_SYSTEM_PROMPT,
            PROJECT_EVAL_USER_PROMPT.format(job_title=job_title, context=retrieved.context,
                                            report_text=report_text),
            ProjectEvaluationResult,
        )
        self.jobs.save_artifact(job_id, Stage.SUBMISSION, payload, ARTIFACT_VERSION)
        logger.info("Job %s stage B done: project_score=%s sources=%d",
                    job_id, payload["project_score"], len(retrieved.sources))
        return payload

    async def synthesize(self, job_id: str, job_title: str) -> Dict:
        logger.info("Job %s stage C: final synthesis", job_id)
        artifacts = self.jobs.get_artifacts(job_id)
        cv = artifacts.get(Stage.PROFILE)
        project = artifacts.get(Stage.SUBMISSION)
        if cv is None or project is None:
            raise IncompleteStageHistory(f"job {job_id} is missing stage A or B results")

        retrieved = await self.retriever.retrieve_synthesis_context(SYNTHESIS_QUERY, 4)
        user_prompt = FINAL_SUMMARY_USER_PROMPT.format(
            job_title=job_title,
            context=retrieved.context,
            cv_match_pct=cv["cv_match_rate"] * 100,
            cv_feedback=cv["cv_feedback"],
            project_score=project["project_score"],
            project_feedback=project["project_feedback"],
            **cv["parameters"],
            **project["parameters"],
        )
        payload = await self._generate(FINAL_SUMMARY_SYSTEM_PROMPT, user_prompt, SynthesisResult)
        self.jobs.save_artifact(job_id, Stage.SYNTHESIS, payload, ARTIFACT_VERSION)
        logger.info("Job %s stage C done: sources=%d", job_id, len(retrieved.sources))
        return payload

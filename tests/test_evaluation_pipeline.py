"""Tests for the three-stage evaluation pipeline."""

import pytest
from sqlalchemy import func, select

from domain.errors import IncompleteStageHistory, MalformedResponse, MissingInputFiles, NotFoundError
from domain.schemas import Stage
from domain.services.evaluation_pipeline import EvaluationPipeline
from infra.db.models import JobArtifactRecord
from infra.rag.qdrant_client import IndexPoint
from infra.rag.retriever import ContextRetriever

from tests.fakes import CV_RESPONSE, PROJECT_RESPONSE, SUMMARY_RESPONSE, FakeIndex, FakeLLM


@pytest.fixture
def index():
    index = FakeIndex()
    for i, doc_type in enumerate(["job_description", "cv_rubric", "case_brief", "project_rubric"]):
        index.points[f"doc_{i}_0"] = IndexPoint(f"doc_{i}_0", [1.0], {
            "document_type": doc_type, "chunk_text": f"{doc_type} guidance", "document_id": f"doc_{i}"})
    return index


@pytest.fixture
def job_id(files_repo, jobs_repo, tmp_path):
    cv = tmp_path / "cv.txt"
    cv.write_text("Senior Python engineer, 6 years of FastAPI and Postgres.", encoding="utf-8")
    report = tmp_path / "report.txt"
    report.write_text("Built an async evaluation service with retries.", encoding="utf-8")
    cv_id = files_repo.save("cv", str(cv), "cv.txt", "0" * 64)
    report_id = files_repo.save("report", str(report), "report.txt", "1" * 64)
    return jobs_repo.create_job("Backend Engineer", cv_id, report_id)


def _pipeline(jobs_repo, files_repo, index, responses):
    llm = FakeLLM(responses)
    return EvaluationPipeline(jobs_repo, files_repo, ContextRetriever(llm, index), llm), llm


def _artifact_rows(session_factory, job_id):
    with session_factory() as s:
        return s.scalar(select(func.count()).select_from(JobArtifactRecord)
                        .where(JobArtifactRecord.job_id == job_id))


class TestSuccessfulRun:
    """Tests for a run through all three stages."""

    async def test_successful_run(self, jobs_repo, files_repo, index, job_id):
        """Every stage leaves an artifact and the job ends completed."""
        pipeline, llm = _pipeline(jobs_repo, files_repo, index, [CV_RESPONSE, PROJECT_RESPONSE, SUMMARY_RESPONSE])
        await pipeline.run(job_id)

        job = jobs_repo.get(job_id)
        assert job["status"] == "completed"
        assert job["attempts"] == 0
        assert job["result"] == {
            "cv_match_rate": 0.82,
            "cv_feedback": CV_RESPONSE["cv_feedback"],
            "project_score": 4.2,
            "project_feedback": PROJECT_RESPONSE["project_feedback"],
            "overall_summary": SUMMARY_RESPONSE["overall_summary"],
        }
        artifacts = jobs_repo.get_artifacts(job_id)
        assert set(artifacts) == {Stage.PROFILE, Stage.SUBMISSION, Stage.SYNTHESIS}
        assert set(artifacts[Stage.PROFILE]) == {"parameters", "weighted_average_1_to_5", "cv_match_rate",
                                                 "cv_feedback"}
        assert set(artifacts[Stage.SUBMISSION]) == {"parameters", "project_score", "project_feedback"}
        assert set(artifacts[Stage.SYNTHESIS]) == {"overall_summary"}

    async def test_stages_use_their_own_context(self, jobs_repo, files_repo, index, job_id):
        """Each stage searches its own document types and sees its own inputs."""
        pipeline, llm = _pipeline(jobs_repo, files_repo, index, [CV_RESPONSE, PROJECT_RESPONSE, SUMMARY_RESPONSE])
        await pipeline.run(job_id)

        assert [s["filter"] for s in index.searches] == [
            {"document_type": ["job_description", "cv_rubric"]},
            {"document_type": ["case_brief", "project_rubric"]},
            None,
        ]
        assert [s["limit"] for s in index.searches] == [6, 6, 4]

        cv_prompt = llm.messages[0][1]["content"]
        assert "Backend Engineer" in cv_prompt
        assert "cv_rubric guidance" in cv_prompt
        assert "6 years of FastAPI" in cv_prompt
        summary_prompt = llm.messages[2][1]["content"]
        assert "82.0%" in summary_prompt
        assert "Project Score: 4.2/5" in summary_prompt

    async def test_scores_are_clamped(self, jobs_repo, files_repo, index, job_id):
        """Out-of-range scores are clamped and a missing aggregate is derived."""
        cv = {**CV_RESPONSE, "cv_match_rate": 1.7, "weighted_average_1_to_5": 9,
              "parameters": {**CV_RESPONSE["parameters"], "technical_skills": 11}}
        project = {**PROJECT_RESPONSE, "project_score": None}
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [cv, project, SUMMARY_RESPONSE])
        await pipeline.run(job_id)

        artifacts = jobs_repo.get_artifacts(job_id)
        assert artifacts[Stage.PROFILE]["cv_match_rate"] == 1.0
        assert artifacts[Stage.PROFILE]["weighted_average_1_to_5"] == 5.0
        assert artifacts[Stage.PROFILE]["parameters"]["technical_skills"] == 5
        assert artifacts[Stage.SUBMISSION]["project_score"] == 4.0

    async def test_completed_job_is_not_run_again(self, jobs_repo, files_repo, index, job_id):
        """A duplicate delivery of a finished job leaves it untouched."""
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [CV_RESPONSE, PROJECT_RESPONSE, SUMMARY_RESPONSE])
        await pipeline.run(job_id)
        before = jobs_repo.get(job_id)

        pipeline, llm = _pipeline(jobs_repo, files_repo, index, [])
        await pipeline.run(job_id)

        assert llm.messages == []
        assert jobs_repo.get(job_id) == before


class TestFailures:
    """Tests for failed runs and reruns."""

    async def test_malformed_stage_fails_job(self, jobs_repo, files_repo, index, job_id):
        """A malformed stage output fails the job for good and keeps earlier artifacts."""
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [CV_RESPONSE, {"project_feedback": "no scores"}])
        with pytest.raises(MalformedResponse):
            await pipeline.run(job_id)

        job = jobs_repo.get(job_id)
        assert (job["status"], job["error_code"], job["attempts"]) == ("failed", "processing_error", 1)
        assert jobs_repo.get_record(job_id).retryable is False
        assert set(jobs_repo.get_artifacts(job_id)) == {Stage.PROFILE}

    async def test_transient_failure_stays_retryable(self, jobs_repo, files_repo, index, job_id):
        """A provider error leaves the job eligible for another attempt."""
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [RuntimeError("rate limit exceeded")])
        with pytest.raises(RuntimeError):
            await pipeline.run(job_id)

        record = jobs_repo.get_record(job_id)
        assert (record.status, record.attempts, record.retryable) == ("failed", 1, True)

    async def test_rerun_overwrites_artifacts(self, jobs_repo, files_repo, index, job_id, session_factory):
        """A second attempt replaces the artifacts of the first one."""
        pipeline, _ = _pipeline(jobs_repo, files_repo, index,
                                [CV_RESPONSE, PROJECT_RESPONSE, RuntimeError("rate limit exceeded")])
        with pytest.raises(RuntimeError):
            await pipeline.run(job_id)
        assert _artifact_rows(session_factory, job_id) == 2

        second_cv = {**CV_RESPONSE, "cv_match_rate": 0.5}
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [second_cv, PROJECT_RESPONSE, SUMMARY_RESPONSE])
        await pipeline.run(job_id)

        job = jobs_repo.get(job_id)
        assert (job["status"], job["attempts"]) == ("completed", 1)
        assert job["result"]["cv_match_rate"] == 0.5
        assert _artifact_rows(session_factory, job_id) == 3

    async def test_wrong_file_kind_is_missing_input(self, jobs_repo, files_repo, index, tmp_path):
        """A CV passed as the report is treated as a missing input."""
        path = tmp_path / "cv.txt"
        path.write_text("cv", encoding="utf-8")
        cv_id = files_repo.save("cv", str(path), "cv.txt", "0" * 64)
        job_id = jobs_repo.create_job("Backend Engineer", cv_id, cv_id)

        pipeline, llm = _pipeline(jobs_repo, files_repo, index, [])
        with pytest.raises(MissingInputFiles):
            await pipeline.run(job_id)
        assert jobs_repo.get(job_id)["status"] == "failed"
        assert llm.messages == []

    async def test_synthesis_requires_previous_stages(self, jobs_repo, files_repo, index, job_id):
        """Stage C refuses to run without both earlier artifacts."""
        jobs_repo.save_artifact(job_id, Stage.PROFILE, CV_RESPONSE)
        pipeline, llm = _pipeline(jobs_repo, files_repo, index, [SUMMARY_RESPONSE])
        with pytest.raises(IncompleteStageHistory):
            await pipeline.synthesize(job_id, "Backend Engineer")
        assert llm.messages == []

    async def test_unknown_job(self, jobs_repo, files_repo, index):
        pipeline, _ = _pipeline(jobs_repo, files_repo, index, [])
        with pytest.raises(NotFoundError):
            await pipeline.run("job_missing")

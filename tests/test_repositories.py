"""Tests for the relational repositories."""

import pytest
from sqlalchemy import func, select

from domain.errors import NotFoundError
from domain.schemas import JobStatus, Stage
from infra.db.models import JobArtifactRecord


@pytest.fixture
def job_id(files_repo, jobs_repo):
    cv_id = files_repo.save("cv", "/tmp/cv.pdf", "cv.pdf", "a" * 64)
    report_id = files_repo.save("report", "/tmp/report.pdf", "report.pdf", "b" * 64)
    return jobs_repo.create_job("Backend Engineer", cv_id, report_id)


def _sibling(jobs_repo, job_id, title="Data Engineer"):
    record = jobs_repo.get_record(job_id)
    return jobs_repo.create_job(title, record.cv_file_id, record.report_file_id)


class TestFilesRepository:
    """Tests for FilesRepository."""

    def test_files_lookup_by_kind(self, files_repo):
        """Files are found by id, optionally restricted to a kind."""
        cv_id = files_repo.save("cv", "/tmp/cv.pdf", "cv.pdf", "a" * 64)
        assert cv_id.startswith("file_")
        assert files_repo.exists(cv_id)
        assert files_repo.exists(cv_id, "cv")
        assert not files_repo.exists(cv_id, "report")
        assert files_repo.get(cv_id).checksum == "a" * 64


class TestJobTransitions:
    """Tests for job status changes."""

    def test_attempts_only_change_on_failure(self, jobs_repo, job_id):
        """Status changes leave attempts alone; every failure counts one."""
        jobs_repo.update_status(job_id, JobStatus.PROCESSING)
        jobs_repo.update_status(job_id, JobStatus.COMPLETED)
        assert jobs_repo.get(job_id)["attempts"] == 0

        jobs_repo.fail(job_id, "processing_error")
        jobs_repo.update_status(job_id, JobStatus.PROCESSING)
        jobs_repo.fail(job_id, "processing_error")
        job = jobs_repo.get(job_id)
        assert (job["status"], job["attempts"], job["error_code"]) == ("failed", 2, "processing_error")

    def test_failure_records_whether_it_was_terminal(self, jobs_repo, job_id):
        """The retryable flag follows the last failure."""
        assert jobs_repo.get_record(job_id).retryable is True
        jobs_repo.fail(job_id, "processing_error", retryable=False)
        assert jobs_repo.get_record(job_id).retryable is False

    def test_unknown_job_transitions(self, jobs_repo):
        """Unknown jobs raise on update and read as None."""
        with pytest.raises(NotFoundError):
            jobs_repo.update_status("job_missing", JobStatus.PROCESSING)
        with pytest.raises(NotFoundError):
            jobs_repo.fail("job_missing", "processing_error")
        assert jobs_repo.get("job_missing") is None


class TestArtifacts:
    """Tests for per-stage artifacts."""

    def test_artifact_is_overwritten_in_place(self, jobs_repo, job_id, session_factory):
        """Saving a stage twice keeps a single row with the latest payload."""
        jobs_repo.save_artifact(job_id, Stage.PROFILE, {"cv_match_rate": 0.1})
        jobs_repo.save_artifact(job_id, Stage.PROFILE, {"cv_match_rate": 0.9})

        assert jobs_repo.get_artifact(job_id, Stage.PROFILE) == {"cv_match_rate": 0.9}
        with session_factory() as s:
            assert s.scalar(select(func.count()).select_from(JobArtifactRecord)) == 1

    def test_deleting_job_cascades_to_artifacts(self, jobs_repo, job_id, session_factory):
        """Deleting a job removes its artifacts."""
        jobs_repo.save_artifact(job_id, Stage.PROFILE, {"cv_match_rate": 0.5})
        jobs_repo.delete(job_id)
        with session_factory() as s:
            assert s.scalar(select(func.count()).select_from(JobArtifactRecord)) == 0

    def test_completed_result_needs_all_stages(self, jobs_repo, job_id):
        """A completed job without all three artifacts has no result."""
        jobs_repo.update_status(job_id, JobStatus.COMPLETED)
        assert jobs_repo.get(job_id)["result"] is None


class TestResumable:
    """Tests for picking jobs up again after a restart."""

    def test_unfinished_jobs_are_resumable(self, jobs_repo, job_id):
        """Queued and processing jobs come back with their attempt count."""
        processing = _sibling(jobs_repo, job_id)
        jobs_repo.update_status(processing, JobStatus.PROCESSING)
        done = _sibling(jobs_repo, job_id, "ML Engineer")
        jobs_repo.update_status(done, JobStatus.COMPLETED)

        assert sorted(jobs_repo.resumable(max_attempts=5)) == sorted([(job_id, 0), (processing, 0)])

    def test_retryable_failure_is_resumable(self, jobs_repo, job_id):
        """A job waiting for its next attempt is picked up again."""
        jobs_repo.fail(job_id, "processing_error")
        assert jobs_repo.resumable(max_attempts=5) == [(job_id, 1)]

    def test_terminal_failure_is_not_resumable(self, jobs_repo, job_id):
        """A terminal failure stays failed."""
        jobs_repo.fail(job_id, "processing_error", retryable=False)
        assert jobs_repo.resumable(max_attempts=5) == []

    def test_exhausted_attempts_are_not_resumable(self, jobs_repo, job_id):
        """A job that used up its attempts stays failed."""
        for _ in range(3):
            jobs_repo.fail(job_id, "processing_error")
        assert jobs_repo.resumable(max_attempts=3) == []
        assert jobs_repo.resumable(max_attempts=4) == [(job_id, 3)]

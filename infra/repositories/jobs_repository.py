import uuid
from typing import Optional, Dict, Any, List, Tuple
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import sessionmaker
from domain.errors import NotFoundError
from domain.schemas import ARTIFACT_VERSION, JobStatus, Stage
from infra.db.session import SessionLocal
from infra.db.models import JobRecord, JobArtifactRecord


class JobsRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def create_job(self, job_title: str, cv_id: str, report_id: str) -> str:
        jid = f"job_{uuid.uuid4().hex}"
        with self.session_factory() as s:
            s.add(JobRecord(id=jid, status=JobStatus.QUEUED.value, job_title=job_title,
                            cv_file_id=cv_id, report_file_id=report_id, attempts=0))
            s.commit()
        return jid

    def get_record(self, job_id: str) -> Optional[JobRecord]:
        with self.session_factory() as s:
            return s.get(JobRecord, job_id)

    def update_status(self, job_id: str, status: JobStatus) -> None:
        """Routine transition; never touches the attempt counter."""
        with self.session_factory() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                raise NotFoundError(f"job {job_id} not found")
            job.status = status.value
            s.commit()

    def fail(self, job_id: str, error_code: str, retryable: bool = True) -> None:
        with self.session_factory() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                raise NotFoundError(f"job {job_id} not found")
            job.status = JobStatus.FAILED.value
            job.error_code = error_code
            job.attempts = (job.attempts or 0) + 1
            job.retryable = retryable
            s.commit()

    def save_artifact(self, job_id: str, stage: Stage, payload: Dict[str, Any],
                      version: str = ARTIFACT_VERSION) -> None:
        """One artifact per (job, stage); a re-run overwrites it in place."""
        with self.session_factory() as s:
            rec = s.scalars(select(JobArtifactRecord).where(
                JobArtifactRecord.job_id == job_id,
                JobArtifactRecord.stage == stage.value,
            )).first()
            if rec is None:
                s.add(JobArtifactRecord(job_id=job_id, stage=stage.value, payload=payload, version=version))
            else:
                rec.payload = payload
                rec.version = version
            s.commit()

    def get_artifacts(self, job_id: str) -> Dict[Stage, Dict[str, Any]]:
        with self.session_factory() as s:
            rows = s.scalars(select(JobArtifactRecord).where(JobArtifactRecord.job_id == job_id)).all()
            return {Stage(r.stage): r.payload for r in rows}

    def get_artifact(self, job_id: str, stage: Stage) -> Optional[Dict[str, Any]]:
        return self.get_artifacts(job_id).get(stage)

    def delete(self, job_id: str) -> None:
        with self.session_factory() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                raise NotFoundError(f"job {job_id} not found")
            s.delete(job)
            s.commit()

    def get(self, job_id: str) -> Optional[Dict]:
        with self.session_factory() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                return None
            out = {"id": job.id, "status": job.status, "result": None,
                   "error_code": job.error_code, "attempts": job.attempts}
        if out["status"] == JobStatus.COMPLETED.value:
            artifacts = self.get_artifacts(job_id)
            cv = artifacts.get(Stage.PROFILE)
            project = artifacts.get(Stage.SUBMISSION)
            summary = artifacts.get(Stage.SYNTHESIS)
            if cv and project and summary:
                out["result"] = {
                    "cv_match_rate": cv["cv_match_rate"],
                    "cv_feedback": cv["cv_feedback"],
                    "project_score": project["project_score"],
                    "project_feedback": project["project_feedback"],
                    "overall_summary": summary["overall_summary"],
                }
        return out

    def resumable(self, max_attempts: int) -> List[Tuple[str, int]]:
        """(job_id, attempts) of jobs a restart has to pick up again: queued or
        processing ones, and failed ones whose retries were still pending."""
        with self.session_factory() as s:
            rows = s.execute(select(JobRecord.id, JobRecord.attempts).where(or_(
                JobRecord.status.in_([JobStatus.QUEUED.value, JobStatus.PROCESSING.value]),
                and_(JobRecord.status == JobStatus.FAILED.value,
                     JobRecord.retryable.is_(True),
                     JobRecord.attempts < max_attempts),
            )).order_by(JobRecord.created_at)).all()
            return [(r.id, r.attempts or 0) for r in rows]

from fastapi import APIRouter, Depends, HTTPException
from app.container import Container
from api.deps import get_container
from domain.schemas import EvaluateRequest, FileKind, JobStatus, JobStatusResponse

router = APIRouter()


@router.post("/evaluate", response_model=JobStatusResponse, response_model_exclude_none=True)
async def evaluate(body: EvaluateRequest, container: Container = Depends(get_container)) -> JobStatusResponse:
    if not (container.files.exists(body.cv_id, FileKind.CV.value)
            and container.files.exists(body.report_id, FileKind.REPORT.value)):
        raise HTTPException(status_code=404, detail="cv_id or report_id not found")

    job_id = container.jobs.create_job(body.job_title, body.cv_id, body.report_id)
    await container.queue.enqueue(job_id)
    return JobStatusResponse(id=job_id, status=JobStatus.QUEUED)

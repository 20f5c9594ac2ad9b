from fastapi import APIRouter, Depends
from app.container import Container
from api.deps import get_container
from domain.errors import NotFoundError
from domain.schemas import JobStatus, JobStatusResponse

router = APIRouter()

FAILED_MESSAGE = "The evaluation could not be completed. Please try again later."


@router.get("/result/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_result(job_id: str, container: Container = Depends(get_container)) -> JobStatusResponse:
    job = container.jobs.get(job_id)
    if not job:
        raise NotFoundError("job not found")
    if job["status"] == JobStatus.FAILED.value:
        return JobStatusResponse(id=job["id"], status=job["status"], error_code=job["error_code"],
                                 attempts=job["attempts"], message=FAILED_MESSAGE)
    return JobStatusResponse(id=job["id"], status=job["status"], result=job["result"])

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from teetime.database import get_db
from teetime.schemas.jobs import DueJobsResponse, JobItem, JobResultRequest, JobResultResponse
from teetime.services.notification_service import list_due_jobs, mark_job_result

router = APIRouter()


@router.get("/jobs/due", response_model=DueJobsResponse)
def get_due_jobs(limit: int = Query(default=20, ge=1, le=200), db: Session = Depends(get_db)):
    """List pending jobs whose run time has passed."""
    jobs = list_due_jobs(db, limit=limit)
    return DueJobsResponse(count=len(jobs), jobs=[JobItem.model_validate(job) for job in jobs])


@router.post("/jobs/{job_id}/result", response_model=JobResultResponse)
def record_job_result(job_id: UUID, request: JobResultRequest, db: Session = Depends(get_db)):
    """Record a delivery outcome reported by an external worker."""
    job = mark_job_result(
        db,
        job_id,
        request.status,
        error=request.error,
        provider_message_id=request.provider_message_id,
    )
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    db.commit()

    return JobResultResponse(
        success=True,
        job_id=job_id,
        status=request.status,
        message=f"Job marked as {request.status}",
    )

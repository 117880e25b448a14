from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from rq.job import Job
from rq.exceptions import NoSuchJobError
from assessment_engine.core.auth import require_roles
from assessment_engine.jobs.queue import queue, redis
from assessment_engine.jobs.sweep_job import sweep_job

router = APIRouter()

class SweepStatus(BaseModel):
    job_id: str
    state: str
    abandoned: Optional[int] = None
    skipped: Optional[int] = None

@router.post("/attempts/sweep", status_code=202, dependencies=[Depends(require_roles("admin"))])
def start_sweep():
    job = queue.enqueue(sweep_job, False, job_timeout=600)
    return {"job_id": job.get_id()}

@router.get("/attempts/sweep/status", response_model=SweepStatus, dependencies=[Depends(require_roles("admin"))])
def sweep_status(job_id: str):
    try:
        job = Job.fetch(job_id, connection=redis)
    except NoSuchJobError:
        raise HTTPException(404, "Job not found")
    meta = job.meta or {}
    state = meta.get("state") or str(job.get_status())
    return SweepStatus(job_id=job_id, state=state, abandoned=meta.get("abandoned"), skipped=meta.get("skipped"))

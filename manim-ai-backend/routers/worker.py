"""
Router used when this deployment acts as the remote worker.
Jobs accepted here always run in this process.
"""

import logging
from fastapi import APIRouter, HTTPException, Query

from errors import ConfigurationError
from routers.generation import local_job_status, local_job_video, require_job_id
from runner import start_worker_job
from schemas import JobStatusResponse, StartResponse, WorkerStartRequest


router = APIRouter(prefix="/worker", tags=["worker"])


@router.post("/start", response_model=StartResponse)
async def start(request: WorkerStartRequest):
    if not request.job_id or not request.client_id or not request.prompt:
        raise HTTPException(status_code=400, detail="jobId, clientId and prompt are required")

    try:
        job, reused = start_worker_job(request.job_id, request.client_id, request.prompt)
    except ConfigurationError as e:
        logging.error(f"Worker refusing job {request.job_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return StartResponse(job_id=job.id, status=job.status.value, reused=reused)


@router.get("/status", response_model=JobStatusResponse)
async def status(job_id: str = Query("", alias="jobId")):
    return local_job_status(require_job_id(job_id))


@router.get("/video")
async def video(job_id: str = Query("", alias="jobId")):
    return local_job_video(require_job_id(job_id))

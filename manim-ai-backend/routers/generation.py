"""
Router for the client-facing job endpoints.
Handles job submission, status polling and video retrieval, locally or by
proxying to the remote worker.
"""

import os
import logging
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse

from errors import ConfigurationError, DelegationError
from jobs import JobStatus, job_store
from runner import RunnerMode, get_runner_mode, get_worker_client, submit_job
from schemas import JobStatusResponse, StartRequest, StartResponse


# Create the router
router = APIRouter(prefix="/api/manim", tags=["manim"])


def delegation_error_response(error: DelegationError) -> JSONResponse:
    logging.error(f"Delegation failed: {error} ({error.details})")
    return JSONResponse(status_code=502, content={"error": str(error), "details": error.details})


def local_job_status(job_id: str) -> JobStatusResponse:
    job = job_store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found.")
    return JobStatusResponse.from_job(job)


def local_job_video(job_id: str) -> FileResponse:
    job = job_store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found.")
    if job.status != JobStatus.succeeded or not job.video_path:
        raise HTTPException(status_code=409, detail="Video not ready.")
    if not os.path.exists(job.video_path):
        logging.error(f"Video for job {job_id} is missing at {job.video_path}")
        raise HTTPException(status_code=500, detail="Video file is missing on the server.")

    return FileResponse(
        job.video_path,
        media_type="video/mp4",
        headers={"Cache-Control": "no-store"},
    )


def require_job_id(job_id: str) -> str:
    job_id = (job_id or "").strip()
    if not job_id:
        raise HTTPException(status_code=400, detail="jobId required")
    return job_id


@router.post("/start", response_model=StartResponse)
def start_job(request: StartRequest):
    """
    Creates a job for the client (or reuses its in-flight one) and
    immediately returns the job id; the pipeline runs in the background.
    """
    if not request.client_id:
        raise HTTPException(status_code=400, detail="clientId required")
    if not request.prompt:
        raise HTTPException(status_code=400, detail="prompt required")

    try:
        job, reused = submit_job(request.client_id, request.prompt)
    except ConfigurationError as e:
        logging.error(f"Refusing job for client {request.client_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except DelegationError as e:
        return delegation_error_response(e)

    return StartResponse(job_id=job.id, status=job.status.value, reused=reused)


@router.get("/status", response_model=JobStatusResponse)
def get_job_status(job_id: str = Query("", alias="jobId")):
    """Returns the job projection from the local store or from the worker."""
    job_id = require_job_id(job_id)

    if get_runner_mode() == RunnerMode.remote:
        try:
            status_code, data = get_worker_client().status(job_id)
        except ConfigurationError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except DelegationError as e:
            return delegation_error_response(e)
        return JSONResponse(status_code=status_code, content=data, headers={"Cache-Control": "no-store"})

    return local_job_status(job_id)


@router.get("/video")
def get_job_video(job_id: str = Query("", alias="jobId")):
    """Streams the finished video, or redirects to the worker that holds it."""
    job_id = require_job_id(job_id)

    if get_runner_mode() == RunnerMode.remote:
        try:
            client = get_worker_client()
        except ConfigurationError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return RedirectResponse(client.video_url(job_id), status_code=302)

    return local_job_video(job_id)

"""
Pydantic models for data validation in the Manim narrated video generator.
All payloads use camelCase keys on the wire.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from jobs import Job


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartRequest(CamelModel):
    """Request model for starting a narrated video job."""
    prompt: str = ""
    client_id: str = ""

    @field_validator("prompt", "client_id", mode="before")
    @classmethod
    def _strip(cls, value):
        return "" if value is None else str(value).strip()


class WorkerStartRequest(StartRequest):
    """Request a delegating deployment sends to its worker."""
    job_id: str = ""

    @field_validator("job_id", mode="before")
    @classmethod
    def _strip_job_id(cls, value):
        return "" if value is None else str(value).strip()


class StartResponse(CamelModel):
    """Response when submitting a background generation job."""
    job_id: str
    status: str  # "queued" | "running"
    reused: bool


class JobStatusResponse(CamelModel):
    """Response for checking background job status. The video path is never exposed."""
    id: str
    client_id: str
    prompt: str
    status: str  # "queued" | "running" | "succeeded" | "failed"
    step: str
    created_at: int
    updated_at: int
    error: str = ""
    logs: List[str] = []
    has_video: bool = False

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            id=job.id,
            client_id=job.client_id,
            prompt=job.prompt,
            status=job.status.value,
            step=job.step.value,
            created_at=job.created_at,
            updated_at=job.updated_at,
            error=job.error or "",
            logs=list(job.logs),
            has_video=bool(job.video_path),
        )

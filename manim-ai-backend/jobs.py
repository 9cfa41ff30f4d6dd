"""
In-memory job store for narrated video generation jobs.

The store is the single source of truth for job state and for the
per-client "active job" index. Every operation is a no-op on unknown ids,
because the submission path, the polling path and the pipeline threads all
touch it without coordinating on job existence.
"""

import enum
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, Dict, Optional, Tuple

from config import JOB_LOG_RETENTION


class JobStatus(str, enum.Enum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class JobStep(str, enum.Enum):
    queued = "queued"
    script = "script"
    tts = "tts"
    manim_code = "manim_code"
    duration = "duration"
    render = "render"
    stitch = "stitch"
    done = "done"
    error = "error"


STEP_ORDER = [
    JobStep.queued,
    JobStep.script,
    JobStep.tts,
    JobStep.manim_code,
    JobStep.duration,
    JobStep.render,
    JobStep.stitch,
    JobStep.done,
]

TERMINAL_STEPS = {JobStep.done, JobStep.error}
ACTIVE_STATUSES = {JobStatus.queued, JobStatus.running}


def status_for_step(step: JobStep) -> JobStatus:
    """Project a fine-grained step onto the coarse job status."""
    if step == JobStep.queued:
        return JobStatus.queued
    if step == JobStep.done:
        return JobStatus.succeeded
    if step == JobStep.error:
        return JobStatus.failed
    return JobStatus.running


def is_allowed_transition(current: JobStep, target: JobStep) -> bool:
    """Steps only move forward; `error` is reachable from any non-terminal step."""
    if current in TERMINAL_STEPS:
        return False
    if target == JobStep.error:
        return True
    return STEP_ORDER.index(target) > STEP_ORDER.index(current)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Job:
    """
    One end-to-end request to turn a prompt into a narrated animation.

    `status` is always derived from `step`; `video_path` is only set once the
    job succeeded and `error` only once it failed.
    """

    id: str
    client_id: str
    prompt: str
    step: JobStep = JobStep.queued
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)
    logs: Deque[str] = field(default_factory=lambda: deque(maxlen=JOB_LOG_RETENTION))
    error: Optional[str] = None
    video_path: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        return status_for_step(self.step)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def snapshot(self) -> "Job":
        return replace(self, logs=deque(self.logs, maxlen=self.logs.maxlen))


UPDATABLE_FIELDS = {"step", "error", "video_path"}


class JobStore:
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._active_by_client: Dict[str, str] = {}
        self._lock = threading.RLock()

    def create_job(self, client_id: str, prompt: str, job_id: Optional[str] = None) -> Job:
        """
        Register a new queued job and make it the client's active job.
        Any previous active entry for the client is superseded.
        """
        job = Job(id=job_id or str(uuid.uuid4()), client_id=client_id, prompt=prompt)
        with self._lock:
            self._jobs[job.id] = job
            self._active_by_client[client_id] = job.id
            return job.snapshot()

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def get_active_job_id(self, client_id: str) -> Optional[str]:
        with self._lock:
            return self._active_by_client.get(client_id)

    def find_active_job(self, client_id: str) -> Optional[Job]:
        """Return the client's active job only if it is still queued or running."""
        with self._lock:
            job_id = self._active_by_client.get(client_id)
            job = self._jobs.get(job_id) if job_id else None
            if job and job.is_active:
                return job.snapshot()
            return None

    def get_or_create_active(self, client_id: str, prompt: str) -> Tuple[Job, bool]:
        """
        Return the client's in-flight job, or create one, as a single step.
        Returns (job, reused). Concurrent callers for the same client always
        end up with the same job.
        """
        with self._lock:
            active = self.find_active_job(client_id)
            if active:
                return active, True
            return self.create_job(client_id, prompt), False

    def update_job(self, job_id: str, **fields) -> bool:
        """
        Merge `fields` into the job and refresh `updated_at`.

        Returns False (and changes nothing) when the job is unknown, a field is
        not updatable, or the requested step transition is not allowed.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            logging.warning(f"Ignoring update of unknown job fields {sorted(unknown)} for job {job_id}")
            return False

        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return False

            if "step" in fields:
                target = JobStep(fields["step"])
                if not is_allowed_transition(job.step, target):
                    logging.warning(f"Rejected transition {job.step.value} -> {target.value} for job {job_id}")
                    return False
                fields["step"] = target

            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = _now_ms()
            return True

    def mark_running(self, job_id: str, step: JobStep) -> bool:
        return self.update_job(job_id, step=step)

    def mark_succeeded(self, job_id: str, video_path: str) -> bool:
        return self.update_job(job_id, step=JobStep.done, video_path=video_path)

    def mark_failed(self, job_id: str, error: str) -> bool:
        return self.update_job(job_id, step=JobStep.error, error=error)

    def append_log(self, job_id: str, line: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job.logs.append(line)
            job.updated_at = _now_ms()

    def retire_job(self, job_id: str) -> None:
        """Clear the client's active entry, but only if it still points at this job."""
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            if self._active_by_client.get(job.client_id) == job_id:
                del self._active_by_client[job.client_id]

    def discard_job(self, job_id: str) -> None:
        """Forget a job that never started (e.g. its delegation failed)."""
        with self._lock:
            self.retire_job(job_id)
            self._jobs.pop(job_id, None)

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._active_by_client.clear()


# Process-wide store, created once at import time.
job_store = JobStore()

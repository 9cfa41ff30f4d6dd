"""
Decides where a job runs and submits it there.

Local mode hands the job to the in-process JobRunner; remote mode forwards it
to a worker deployment over HTTP.
"""

import enum
import logging
import threading
from typing import Optional, Tuple

from config import (
    get_openai_api_key,
    get_runner_override,
    get_worker_url,
    is_development,
    is_serverless_host,
)
from errors import ConfigurationError, DelegationError
from jobs import Job, JobStep, JobStore, job_store
from pipeline import JobRunner, job_runner
from worker_client import WorkerClient


class RunnerMode(str, enum.Enum):
    local = "local"
    remote = "remote"


def get_runner_mode() -> RunnerMode:
    """
    Pick the runner mode from configuration only.

    A serverless host always delegates, since it cannot run manim or ffmpeg.
    Otherwise an explicit MANIM_RUNNER wins, development defaults to local,
    and any other environment delegates only when a worker is configured.
    """
    if is_serverless_host():
        return RunnerMode.remote

    override = get_runner_override()
    if override in (RunnerMode.local.value, RunnerMode.remote.value):
        return RunnerMode(override)

    if is_development():
        return RunnerMode.local

    return RunnerMode.remote if get_worker_url() else RunnerMode.local


def get_worker_client() -> WorkerClient:
    worker_url = get_worker_url()
    if not worker_url:
        raise ConfigurationError(
            "MANIM_WORKER_URL is not set. Remote mode needs a worker for Manim rendering."
        )
    return WorkerClient(worker_url)


def ensure_configured(mode: RunnerMode):
    """Fail fast on missing configuration, before any job is created."""
    if mode == RunnerMode.remote:
        get_worker_client()
    elif not get_openai_api_key():
        raise ConfigurationError("OPENAI_API_KEY missing.")


# Jobs whose /start call is still in flight; the worker does not know them yet.
_delegating = set()
_delegating_lock = threading.Lock()


def _is_delegating(job_id: str) -> bool:
    with _delegating_lock:
        return job_id in _delegating


def refresh_remote_job(job: Job, client: WorkerClient, store: JobStore = job_store) -> Optional[Job]:
    """
    Mirror the worker's view of a delegated job into the local store.
    Returns the job if it is still in flight, None once it is terminal.
    """
    status_code, data = client.status(job.id)
    if status_code == 404:
        store.mark_failed(job.id, "Worker no longer knows this job.")
        store.retire_job(job.id)
        return None

    step = data.get("step")
    if step in {s.value for s in JobStep} and step != job.step.value:
        store.update_job(job.id, step=step, error=data.get("error") or None)

    refreshed = store.get_job(job.id)
    if refreshed is None or not refreshed.is_active:
        store.retire_job(job.id)
        return None
    return refreshed


def submit_job(
    client_id: str,
    prompt: str,
    store: JobStore = job_store,
    runner: JobRunner = job_runner,
) -> Tuple[Job, bool]:
    """
    Start a job for the client, or return its in-flight job.
    Returns (job, reused).
    """
    mode = get_runner_mode()
    ensure_configured(mode)
    client = get_worker_client() if mode == RunnerMode.remote else None

    if client is not None:
        # The worker round trip stays outside the store lock.
        active = store.find_active_job(client_id)
        if active and not _is_delegating(active.id):
            refresh_remote_job(active, client, store)

    job, reused = store.get_or_create_active(client_id, prompt)
    if reused:
        logging.info(f"♻️ Reusing in-flight job {job.id} for client {client_id}")
        return job, True

    logging.info(f"✨ Job {job.id} created for prompt: '{prompt}' ({mode.value} mode)")

    if client is None:
        runner.submit(job.id)
        return job, False

    with _delegating_lock:
        _delegating.add(job.id)
    try:
        client.start(job)
    except DelegationError:
        store.discard_job(job.id)
        raise
    finally:
        with _delegating_lock:
            _delegating.discard(job.id)
    return job, False


def start_worker_job(
    job_id: str,
    client_id: str,
    prompt: str,
    store: JobStore = job_store,
    runner: JobRunner = job_runner,
) -> Tuple[Job, bool]:
    """Accept a delegated job under the caller's id and run it in this process."""
    if not get_openai_api_key():
        raise ConfigurationError("OPENAI_API_KEY missing.")

    existing = store.get_job(job_id)
    if existing:
        return existing, True

    job = store.create_job(client_id, prompt, job_id=job_id)
    runner.submit(job.id)
    return job, False

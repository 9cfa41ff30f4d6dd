"""
HTTP client for a remote worker deployment of this service.

The worker exposes the same start/status/video operations under
`<MANIM_WORKER_URL>/start`, `/status` and `/video`.
"""

import logging
from typing import Tuple
from urllib.parse import quote

import requests

from config import WORKER_TIMEOUT_SECONDS
from errors import WorkerResponseError, WorkerUnreachable
from jobs import Job


class WorkerClient:
    def __init__(self, base_url: str, timeout: int = WORKER_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def start(self, job: Job) -> dict:
        payload = {"jobId": job.id, "clientId": job.client_id, "prompt": job.prompt}
        try:
            response = requests.post(f"{self.base_url}/start", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logging.error(f"❌ Failed to reach worker for job {job.id}: {e}")
            raise WorkerUnreachable("Failed to reach MANIM worker", details=str(e))

        if not response.ok:
            raise WorkerResponseError(f"Worker returned {response.status_code}", details=response.text[:800])
        try:
            return response.json()
        except ValueError:
            raise WorkerResponseError("Invalid worker response", details=response.text[:800])

    def status(self, job_id: str) -> Tuple[int, dict]:
        """Return the worker's status code and JSON body unchanged."""
        try:
            response = requests.get(
                f"{self.base_url}/status",
                params={"jobId": job_id},
                headers={"Cache-Control": "no-store"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise WorkerUnreachable("Failed to reach MANIM worker", details=str(e))

        try:
            data = response.json()
        except ValueError:
            raise WorkerResponseError("Invalid worker response", details=response.text[:800])
        if not isinstance(data, dict):
            raise WorkerResponseError("Invalid worker response", details=str(data)[:800])
        return response.status_code, data

    def video_url(self, job_id: str) -> str:
        return f"{self.base_url}/video?jobId={quote(job_id, safe='')}"

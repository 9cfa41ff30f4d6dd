# manim-ai-backend/tests/conftest.py

import os
import sys

import pytest

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from jobs import JobStore, job_store
from pipeline import job_runner

RUNNER_ENV_VARS = ["MANIM_RUNNER", "MANIM_WORKER_URL", "VERCEL", "APP_ENV", "OPENAI_API_KEY"]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Every test starts from an empty store and no runner configuration."""
    for name in RUNNER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    job_store.reset()
    yield
    job_store.reset()


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def submitted_jobs(monkeypatch):
    """Replace the background runner so no real pipeline is started."""
    submitted = []
    monkeypatch.setattr(job_runner, "submit", lambda job_id: submitted.append(job_id))
    return submitted


@pytest.fixture
def local_mode(monkeypatch):
    monkeypatch.setenv("MANIM_RUNNER", "local")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


@pytest.fixture
def remote_mode(monkeypatch):
    monkeypatch.setenv("MANIM_RUNNER", "remote")
    monkeypatch.setenv("MANIM_WORKER_URL", "http://worker.test/worker/")


@pytest.fixture
def client(submitted_jobs):
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)

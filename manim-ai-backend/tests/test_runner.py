# manim-ai-backend/tests/test_runner.py

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

import runner
from errors import ConfigurationError, WorkerResponseError, WorkerUnreachable
from jobs import JobStatus, JobStep, JobStore, job_store
from runner import RunnerMode, get_runner_mode, refresh_remote_job, start_worker_job, submit_job
from worker_client import WorkerClient


def _response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


class TestRunnerMode:
    def test_default_without_worker_is_local(self):
        assert get_runner_mode() == RunnerMode.local

    def test_default_with_worker_is_remote(self, monkeypatch):
        monkeypatch.setenv("MANIM_WORKER_URL", "http://worker.test")
        assert get_runner_mode() == RunnerMode.remote

    def test_development_defaults_to_local(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        monkeypatch.setenv("MANIM_WORKER_URL", "http://worker.test")
        assert get_runner_mode() == RunnerMode.local

    @pytest.mark.parametrize("value, expected", [
        ("local", RunnerMode.local),
        (" REMOTE ", RunnerMode.remote),
    ])
    def test_explicit_override(self, monkeypatch, value, expected):
        monkeypatch.setenv("MANIM_WORKER_URL", "http://worker.test")
        monkeypatch.setenv("MANIM_RUNNER", value)
        assert get_runner_mode() == expected

    def test_unknown_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv("MANIM_RUNNER", "cloud")
        assert get_runner_mode() == RunnerMode.local

    def test_serverless_host_forces_remote(self, monkeypatch):
        monkeypatch.setenv("VERCEL", "1")
        monkeypatch.setenv("MANIM_RUNNER", "local")
        assert get_runner_mode() == RunnerMode.remote


class TestLocalSubmission:
    def test_missing_api_key_fails_before_job_creation(self, monkeypatch, submitted_jobs):
        monkeypatch.setenv("MANIM_RUNNER", "local")

        with pytest.raises(ConfigurationError):
            submit_job("client", "prompt")

        assert job_store.get_active_job_id("client") is None
        assert submitted_jobs == []

    def test_new_job_is_submitted(self, local_mode, submitted_jobs):
        job, reused = submit_job("client", "prompt")

        assert reused is False
        assert submitted_jobs == [job.id]
        assert job_store.get_active_job_id("client") == job.id

    def test_in_flight_job_is_reused(self, local_mode, submitted_jobs):
        first, _ = submit_job("client", "prompt")
        job_store.update_job(first.id, step=JobStep.render)

        second, reused = submit_job("client", "another prompt")

        assert reused is True
        assert second.id == first.id
        assert submitted_jobs == [first.id]

    def test_finished_job_is_not_reused(self, local_mode, submitted_jobs):
        first, _ = submit_job("client", "prompt")
        job_store.mark_succeeded(first.id, "/tmp/final.mp4")
        job_store.retire_job(first.id)

        second, reused = submit_job("client", "prompt")

        assert reused is False
        assert second.id != first.id

    def test_concurrent_submissions_share_one_job(self, local_mode):
        class SlowStore(JobStore):
            """Yields the thread between the active-job lookup and job creation."""

            def find_active_job(self, client_id):
                found = super().find_active_job(client_id)
                time.sleep(0.2)
                return found

        class RecordingRunner:
            def __init__(self):
                self.started = []

            def submit(self, job_id):
                self.started.append(job_id)

        store, recorder = SlowStore(), RecordingRunner()
        barrier = threading.Barrier(2)
        results = []

        def submit():
            barrier.wait()
            results.append(submit_job("c1", "p", store=store, runner=recorder))

        threads = [threading.Thread(target=submit) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert sorted(reused for _, reused in results) == [False, True]
        assert len({job.id for job, _ in results}) == 1
        assert len(recorder.started) == 1

    def test_clients_are_independent(self, local_mode, submitted_jobs):
        a, _ = submit_job("client-a", "prompt")
        b, reused = submit_job("client-b", "prompt")

        assert reused is False
        assert a.id != b.id


class TestRemoteSubmission:
    def test_missing_worker_url_is_configuration_error(self, monkeypatch):
        monkeypatch.setenv("MANIM_RUNNER", "remote")

        with pytest.raises(ConfigurationError):
            submit_job("client", "prompt")

    def test_job_is_forwarded_to_worker(self, remote_mode, submitted_jobs):
        with patch("worker_client.requests.post", return_value=_response(200, {"ok": True})) as post:
            job, reused = submit_job("client", "prompt")

        assert reused is False
        assert submitted_jobs == []
        url = post.call_args.args[0]
        assert url == "http://worker.test/worker/start"
        assert post.call_args.kwargs["json"] == {"jobId": job.id, "clientId": "client", "prompt": "prompt"}

    def test_unreachable_worker_discards_job(self, remote_mode):
        with patch("worker_client.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(WorkerUnreachable) as excinfo:
                submit_job("client", "prompt")

        assert "refused" in excinfo.value.details
        assert job_store.get_active_job_id("client") is None

    def test_worker_error_status_discards_job(self, remote_mode):
        with patch("worker_client.requests.post", return_value=_response(500, text="boom")):
            with pytest.raises(WorkerResponseError, match="Worker returned 500"):
                submit_job("client", "prompt")

        assert job_store.get_active_job_id("client") is None

    def test_running_remote_job_is_reused(self, remote_mode):
        with patch("worker_client.requests.post", return_value=_response(200, {})):
            first, _ = submit_job("client", "prompt")

        worker_status = _response(200, {"id": first.id, "status": "running", "step": "render"})
        with patch("worker_client.requests.get", return_value=worker_status):
            second, reused = submit_job("client", "prompt")

        assert reused is True
        assert second.id == first.id
        assert job_store.get_job(first.id).step == JobStep.render

    def test_job_still_being_delegated_is_reused_without_refresh(self, remote_mode, monkeypatch):
        job = job_store.create_job("client", "prompt")
        monkeypatch.setattr(runner, "_delegating", {job.id})

        with patch("worker_client.requests.get") as get:
            second, reused = submit_job("client", "prompt")

        assert reused is True
        assert second.id == job.id
        get.assert_not_called()

    def test_finished_remote_job_is_retired(self, remote_mode):
        with patch("worker_client.requests.post", return_value=_response(200, {})):
            first, _ = submit_job("client", "prompt")

        worker_status = _response(200, {"id": first.id, "status": "succeeded", "step": "done"})
        with patch("worker_client.requests.get", return_value=worker_status):
            with patch("worker_client.requests.post", return_value=_response(200, {})):
                second, reused = submit_job("client", "prompt")

        assert reused is False
        assert second.id != first.id
        assert job_store.get_job(first.id).status == JobStatus.succeeded

    def test_forgotten_remote_job_is_failed(self, remote_mode):
        job = job_store.create_job("client", "prompt")
        client = WorkerClient("http://worker.test")

        with patch("worker_client.requests.get", return_value=_response(404, {"detail": "Job not found."})):
            assert refresh_remote_job(job, client) is None

        assert job_store.get_job(job.id).status == JobStatus.failed
        assert job_store.get_active_job_id("client") is None


class TestWorkerClient:
    def test_status_passes_through_code_and_body(self):
        client = WorkerClient("http://worker.test/")
        with patch("worker_client.requests.get", return_value=_response(200, {"status": "queued"})) as get:
            assert client.status("abc") == (200, {"status": "queued"})

        assert get.call_args.args[0] == "http://worker.test/status"
        assert get.call_args.kwargs["params"] == {"jobId": "abc"}

    def test_status_with_invalid_json(self):
        client = WorkerClient("http://worker.test")
        with patch("worker_client.requests.get", return_value=_response(200, ValueError("no json"), "<html>")):
            with pytest.raises(WorkerResponseError, match="Invalid worker response"):
                client.status("abc")

    def test_status_unreachable(self):
        client = WorkerClient("http://worker.test")
        with patch("worker_client.requests.get", side_effect=requests.Timeout("slow")):
            with pytest.raises(WorkerUnreachable):
                client.status("abc")

    def test_video_url_escapes_job_id(self):
        client = WorkerClient("http://worker.test")
        assert client.video_url("a b/c") == "http://worker.test/video?jobId=a%20b%2Fc"


class TestWorkerJobs:
    def test_worker_runs_job_under_given_id(self, monkeypatch, submitted_jobs):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        job, reused = start_worker_job("front-id", "client", "prompt")

        assert job.id == "front-id"
        assert reused is False
        assert submitted_jobs == ["front-id"]

    def test_worker_start_is_idempotent(self, monkeypatch, submitted_jobs):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        start_worker_job("front-id", "client", "prompt")

        job, reused = start_worker_job("front-id", "client", "prompt")

        assert reused is True
        assert submitted_jobs == ["front-id"]

    def test_worker_requires_api_key(self, submitted_jobs):
        with pytest.raises(ConfigurationError):
            start_worker_job("front-id", "client", "prompt")

"""
The render job orchestrator.

NarrationPipeline drives one job through
script -> tts -> manim_code -> duration -> render -> stitch -> done,
recording every transition in the job store. JobRunner owns the background
threads the pipelines run on.
"""

import os
import json
import logging
import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Set

from config import (
    JOBS_DIR,
    MAX_CONCURRENT_JOBS,
    SCENE_CLASS_TEMPLATE,
    FINAL_VIDEO_NAME,
    get_openai_api_key,
)
from errors import ConfigurationError, ScriptParseError
from jobs import Job, JobStep, JobStore, job_store
from media import MediaTools
from scripting import ParsedScript, SceneCodeValidator, parse_script, patch_scene_timing, slugify
from services import LLMService, SpeechService


def _write_file(path: str, content) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    mode = "wb" if isinstance(content, bytes) else "w"
    encoding = None if isinstance(content, bytes) else "utf-8"
    with open(path, mode, encoding=encoding) as f:
        f.write(content)
    return path


def job_work_dir(job: Job, root: str = JOBS_DIR) -> str:
    return os.path.join(root, f"{job.id}-{slugify(job.prompt) or 'job'}")


class NarrationPipeline:
    """Runs every stage of one job in order. Never raises."""

    def __init__(
        self,
        store: JobStore = job_store,
        llm: Optional[LLMService] = None,
        speech: Optional[SpeechService] = None,
        tools_factory: Callable[[JobStore, str], MediaTools] = MediaTools,
        jobs_dir: Optional[str] = None,
    ):
        self.store = store
        self.llm = llm
        self.speech = speech
        self.tools_factory = tools_factory
        self.jobs_dir = jobs_dir or JOBS_DIR

    def _log(self, job_id: str, line: str):
        self.store.append_log(job_id, line)

    def _enter(self, job_id: str, step: JobStep, message: str):
        self.store.mark_running(job_id, step)
        self._log(job_id, message)
        logging.info(f"▶️ Job {job_id}: {step.value}")

    def _ensure_clients(self):
        if self.llm is not None and self.speech is not None:
            return
        api_key = get_openai_api_key()
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY missing.")
        if self.llm is None:
            self.llm = LLMService(api_key)
        if self.speech is None:
            self.speech = SpeechService(api_key)

    # --- stages ---

    def write_script(self, job: Job, work_dir: str) -> ParsedScript:
        self._enter(job.id, JobStep.script, "Generating <nar>/<viz> script...")
        raw_script = self.llm.generate_script(job.prompt)
        _write_file(os.path.join(work_dir, "script.txt"), raw_script)

        script = parse_script(raw_script)
        if not script.narrations or not script.visualizations:
            raise ScriptParseError("Failed to parse <nar>/<viz> script.")

        _write_file(os.path.join(work_dir, "nar.json"), json.dumps(script.narrations, indent=2))
        _write_file(os.path.join(work_dir, "viz.json"), json.dumps(script.visualizations, indent=2))

        if len(script.narrations) != len(script.visualizations):
            self._log(
                job.id,
                f"Script has {len(script.narrations)} narration and {len(script.visualizations)} "
                f"visualization blocks; using the first {script.segment_count} segments.",
            )
        count = script.segment_count
        return ParsedScript(script.narrations[:count], script.visualizations[:count])

    def synthesize_audio(self, job: Job, work_dir: str, narrations: List[str]) -> List[str]:
        self._enter(job.id, JobStep.tts, f"Generating TTS audio for {len(narrations)} segments...")
        audio_paths = []
        for i, text in enumerate(narrations, start=1):
            path = os.path.join(work_dir, "audio", f"script{i}.mp3")
            _write_file(path, self.speech.synthesize(text))
            audio_paths.append(path)
            self._log(job.id, f"TTS {i}/{len(narrations)} written: {os.path.basename(path)}")
        return audio_paths

    def generate_scene_code(self, job: Job, work_dir: str, visualizations: List[str]) -> List[str]:
        self._enter(job.id, JobStep.manim_code, f"Generating Manim code for {len(visualizations)} scenes...")
        script_paths = []
        for i, visualization in enumerate(visualizations, start=1):
            class_name = SCENE_CLASS_TEMPLATE.format(index=i)
            raw = self.llm.generate_scene_code(visualization)
            _write_file(os.path.join(work_dir, f"manim_raw_{i}.txt"), raw)

            code = SceneCodeValidator(raw, class_name).run()
            path = _write_file(os.path.join(work_dir, "python_scripts", f"script_{i}.py"), code)
            script_paths.append(path)
            self._log(job.id, f"Manim script written: {os.path.basename(path)}")
        return script_paths

    def measure_durations(self, job: Job, tools: MediaTools, audio_paths: List[str]) -> List[float]:
        self._enter(job.id, JobStep.duration, "Computing audio durations...")
        durations = []
        for i, path in enumerate(audio_paths, start=1):
            duration = tools.probe_duration(path)
            durations.append(duration)
            self._log(job.id, f"Audio {i}: {duration:.2f}s")
        return durations

    def patch_timing(self, job: Job, work_dir: str, script_paths: List[str], durations: List[float]) -> List[str]:
        processed = []
        for i, (path, duration) in enumerate(zip(script_paths, durations), start=1):
            with open(path, encoding="utf-8") as f:
                source = f.read()
            patched = patch_scene_timing(source, duration)
            if patched == source:
                self._log(job.id, f"Scene {i} has no play calls; rendering it with its natural length.")
            dest = os.path.join(work_dir, "processed", f"script_{i}_processed.py")
            processed.append(_write_file(dest, patched))
        return processed

    def render_scenes(self, job: Job, work_dir: str, tools: MediaTools, script_paths: List[str]) -> List[str]:
        self._enter(job.id, JobStep.render, "Rendering scenes with Manim...")
        videos = []
        for i, path in enumerate(script_paths, start=1):
            class_name = SCENE_CLASS_TEMPLATE.format(index=i)
            media_dir = os.path.join(work_dir, "render", f"scene_{i}")
            video = tools.render_scene(path, class_name, media_dir)
            videos.append(video)
            self._log(job.id, f"Rendered scene {i}: {os.path.relpath(video, work_dir)}")
        return videos

    def stitch(self, job: Job, work_dir: str, tools: MediaTools, videos: List[str], audio_paths: List[str]) -> str:
        self._enter(job.id, JobStep.stitch, "Muxing audio into scene videos...")
        muxed = []
        for i, (video, audio) in enumerate(zip(videos, audio_paths), start=1):
            out = os.path.join(work_dir, "muxed", f"scene_{i}_with_audio.mp4")
            os.makedirs(os.path.dirname(out), exist_ok=True)
            muxed.append(tools.mux_audio(video, audio, out))

        self._log(job.id, "Concatenating into final MP4...")
        return tools.concat_clips(muxed, os.path.join(work_dir, FINAL_VIDEO_NAME), work_dir)

    # --- driver ---

    def run(self, job_id: str):
        job = self.store.get_job(job_id)
        if not job:
            logging.warning(f"Job {job_id} not found; nothing to run.")
            return

        try:
            self._ensure_clients()
            work_dir = job_work_dir(job, self.jobs_dir)
            os.makedirs(work_dir, exist_ok=True)
            tools = self.tools_factory(self.store, job.id)

            script = self.write_script(job, work_dir)
            audio_paths = self.synthesize_audio(job, work_dir, script.narrations)
            script_paths = self.generate_scene_code(job, work_dir, script.visualizations)
            durations = self.measure_durations(job, tools, audio_paths)
            processed = self.patch_timing(job, work_dir, script_paths, durations)
            videos = self.render_scenes(job, work_dir, tools, processed)
            final_path = self.stitch(job, work_dir, tools, videos, audio_paths)

            self.store.mark_succeeded(job.id, final_path)
            self._log(job.id, f"DONE: {final_path}")
            logging.info(f"✅ Job {job.id} finished. Video at: {final_path}")

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logging.error(f"❌ Job {job.id} failed. Error: {message}")
            logging.debug(traceback.format_exc())
            self.store.mark_failed(job.id, message)
            self._log(job.id, f"ERROR: {message}")
        finally:
            self.store.retire_job(job.id)


class JobRunner:
    """Launches pipelines on a thread pool and keeps their handles for shutdown."""

    def __init__(self, pipeline_factory: Callable[[], NarrationPipeline] = NarrationPipeline,
                 max_workers: int = MAX_CONCURRENT_JOBS):
        self.pipeline_factory = pipeline_factory
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, job_id: str) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="manim-job")
            future = self._executor.submit(self.pipeline_factory().run, job_id)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        logging.info(f"✨ Job {job_id} submitted to the background runner")
        return future

    def _forget(self, future: Future):
        with self._lock:
            self._futures.discard(future)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._futures)

    def shutdown(self, wait: bool = False):
        with self._lock:
            executor, self._executor = self._executor, None
            pending = len(self._futures)
        if executor is None:
            return
        if pending:
            logging.warning(f"Shutting down with {pending} job(s) still in flight")
        executor.shutdown(wait=wait, cancel_futures=True)


job_runner = JobRunner()

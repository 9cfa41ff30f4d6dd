"""
External tool wrappers: command runner with job-log capture, ffprobe duration
probe, Manim renderer, and ffmpeg mux/concat.
"""

import math
import os
import sys
import logging
import subprocess
from typing import List, Optional

import ffmpeg

from config import RENDER_TIMEOUT_SECONDS, FFMPEG_TIMEOUT_SECONDS
from errors import ToolError
from jobs import JobStore

RENDER_QUALITIES = ["480p15", "720p30", "1080p60", "1440p60", "2160p60"]


class MediaTools:
    """Runs manim/ffmpeg for one job, mirroring their output into the job log."""

    def __init__(self, store: JobStore, job_id: str):
        self.store = store
        self.job_id = job_id

    def log(self, line: str):
        self.store.append_log(self.job_id, line)

    def run_command(self, command: List[str], timeout: int, cwd: Optional[str] = None) -> str:
        self.log(f"$ {' '.join(command)}")
        logging.info(f"🎬 Job {self.job_id} running: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
                env=os.environ.copy(),
            )
        except FileNotFoundError:
            raise ToolError(f"{command[0]} is not installed or not on PATH.")
        except subprocess.TimeoutExpired:
            raise ToolError(f"{os.path.basename(command[0])} timed out after {timeout} seconds.")

        stdout = (result.stdout or "").rstrip()
        stderr = (result.stderr or "").rstrip()
        if stdout:
            self.log(stdout)
        if stderr:
            self.log(stderr)

        if result.returncode != 0:
            logging.error(f"❌ Job {self.job_id}: {command[0]} exited with code {result.returncode}")
            raise ToolError(
                f"{os.path.basename(command[0])} exited with code {result.returncode}",
                output=stderr or stdout,
            )
        return stdout

    def probe_duration(self, audio_path: str) -> float:
        """Wall-clock duration of an audio file in seconds."""
        try:
            info = ffmpeg.probe(audio_path)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf8", errors="replace").rstrip() if e.stderr else ""
            if stderr:
                self.log(stderr)
            raise ToolError(f"ffprobe failed for {os.path.basename(audio_path)}", output=stderr)
        except FileNotFoundError:
            raise ToolError("ffprobe is not installed or not on PATH.")

        try:
            duration = float(info["format"]["duration"])
        except (KeyError, TypeError, ValueError):
            raise ToolError(f"ffprobe returned no duration for {os.path.basename(audio_path)}")
        if not math.isfinite(duration):
            raise ToolError(f"ffprobe returned a non-finite duration for {os.path.basename(audio_path)}")
        return duration

    def render_scene(self, script_path: str, class_name: str, media_dir: str) -> str:
        """Render one scene class and return the produced mp4."""
        os.makedirs(media_dir, exist_ok=True)
        command = [
            sys.executable, "-m", "manim",
            "-ql",
            "--format=mp4",
            "--media_dir", media_dir,
            "-o", class_name,
            script_path, class_name,
        ]
        self.run_command(command, timeout=RENDER_TIMEOUT_SECONDS)

        video_file = find_rendered_video(media_dir, class_name)
        if not video_file:
            raise ToolError("Manim did not produce an mp4.")
        return video_file

    def mux_audio(self, video_path: str, audio_path: str, output_path: str) -> str:
        """Replace the scene's audio with its narration track."""
        video = ffmpeg.input(video_path).video
        audio = ffmpeg.input(audio_path).audio
        stream = ffmpeg.output(
            video, audio, output_path,
            vcodec="libx264",
            acodec="aac",
            shortest=None,
            movflags="+faststart",
        ).overwrite_output()
        self.run_command(stream.compile(), timeout=FFMPEG_TIMEOUT_SECONDS)
        return output_path

    def concat_clips(self, clip_paths: List[str], output_path: str, work_dir: str) -> str:
        """Concatenate clips in the given order with the concat demuxer."""
        list_file = os.path.join(work_dir, "concat.txt")
        with open(list_file, "w", encoding="utf-8") as f:
            for path in clip_paths:
                escaped = os.path.abspath(path).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")

        stream = ffmpeg.input(list_file, format="concat", safe=0).output(
            output_path,
            vcodec="libx264",
            acodec="aac",
            movflags="+faststart",
        ).overwrite_output()
        self.run_command(stream.compile(), timeout=FFMPEG_TIMEOUT_SECONDS)
        return output_path


def _newest(paths: List[str]) -> str:
    return max(paths, key=os.path.getmtime) if paths else ""


def find_rendered_video(media_dir: str, output_name: Optional[str] = None) -> str:
    """
    Manim outputs <media_dir>/videos/<script_stem>/<quality>/<name>.mp4
    We look for the requested name first, then fall back to the newest mp4
    anywhere under media_dir (partial movie files excluded).
    """
    candidates = []
    for root, _, files in os.walk(media_dir):
        if "partial_movie_files" in root:
            continue
        for fname in files:
            if fname.endswith(".mp4"):
                candidates.append(os.path.join(root, fname))

    if output_name:
        named = [p for p in candidates if os.path.splitext(os.path.basename(p))[0] == output_name]
        preferred = [p for p in named if os.path.basename(os.path.dirname(p)) in RENDER_QUALITIES]
        if preferred or named:
            return _newest(preferred or named)

    return _newest(candidates)

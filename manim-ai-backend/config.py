"""
Configuration file for the Manim narrated video generator.
Contains global constants, environment lookups and prompt engineering templates.
"""

import os

# --- Constants ---
PROJECT_ROOT = os.getcwd()
JOBS_DIR = os.getenv("MANIM_JOBS_DIR", os.path.join(PROJECT_ROOT, ".manim_jobs"))

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))
TTS_MODEL = os.getenv("TTS_MODEL", "tts-1")
TTS_VOICE = os.getenv("TTS_VOICE", "echo")

LLM_TIMEOUT_SECONDS = int(os.getenv("LLM_TIMEOUT_SECONDS", "180"))
TTS_TIMEOUT_SECONDS = int(os.getenv("TTS_TIMEOUT_SECONDS", "120"))
RENDER_TIMEOUT_SECONDS = int(os.getenv("RENDER_TIMEOUT_SECONDS", "300"))
FFMPEG_TIMEOUT_SECONDS = int(os.getenv("FFMPEG_TIMEOUT_SECONDS", "300"))
WORKER_TIMEOUT_SECONDS = int(os.getenv("WORKER_TIMEOUT_SECONDS", "30"))

MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "2"))
JOB_LOG_RETENTION = 400

SCENE_CLASS_TEMPLATE = "Script{index}"
FINAL_VIDEO_NAME = "COMPLETE.mp4"

CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def get_openai_api_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def get_runner_override() -> str:
    return os.getenv("MANIM_RUNNER", "").strip().lower()


def get_worker_url() -> str:
    return os.getenv("MANIM_WORKER_URL", "").strip().rstrip("/")


def is_serverless_host() -> bool:
    # Serverless hosts cannot run manim/ffmpeg.
    return os.getenv("VERCEL", "").strip() == "1"


def is_development() -> bool:
    return os.getenv("APP_ENV", "").strip().lower() == "development"


# --- Prompt Engineering Section ---

SCRIPT_SYSTEM_PROMPT = (
    "You create short educational Manim videos. Output ONLY a script alternating narration "
    "and visualization blocks using this exact format: <nar> ... <nar> and <viz> ... <viz>. "
    "Create 3 to 6 segments total. Narration should be concise. Visualization should be "
    "concrete and implementable in Manim."
)

SCENE_SYSTEM_PROMPT = """You write Manim Community Edition Python code.

VERY IMPORTANT RULES:
1.  Return ONLY a Python code block containing a single Scene class. No prose.
2.  Use `from manim import *` at the top.
3.  The class name MUST be `GenScene` and it MUST inherit from `Scene`.
4.  Put every animation inside `construct` and write each `self.play(...)` call on a single line.
5.  NEVER use `FunctionGraph`. It is deprecated. Use `Axes` and `axes.plot()` instead.
"""

SCENE_USER_TEMPLATE = "Write a Manim scene for this visualization (15-25 seconds max):\n{visualization}"

# --- Examples ---
EXAMPLE_1_USER = SCENE_USER_TEMPLATE.format(visualization="Show a blue circle turning into a red square.")
EXAMPLE_1_ASSISTANT = """```python
from manim import *

class GenScene(Scene):
    def construct(self):
        circle = Circle(color=BLUE)
        square = Square(color=RED)
        self.play(Create(circle))
        self.wait(1)
        self.play(Transform(circle, square))
        self.wait(1)
```"""

EXAMPLE_2_USER = SCENE_USER_TEMPLATE.format(
    visualization="Plot the graph of the function y = x**2 from x = -2 to x = 2."
)
EXAMPLE_2_ASSISTANT = """```python
from manim import *

class GenScene(Scene):
    def construct(self):
        axes = Axes(x_range=[-3, 3, 1], y_range=[-1, 9, 1])
        graph = axes.plot(lambda x: x**2, x_range=[-2, 2], color=BLUE)
        graph_label = axes.get_graph_label(graph, label="y=x^2")
        self.play(Create(axes))
        self.play(Create(graph), Write(graph_label))
        self.wait(1)
```"""

SCENE_EXAMPLES = [
    (EXAMPLE_1_USER, EXAMPLE_1_ASSISTANT),
    (EXAMPLE_2_USER, EXAMPLE_2_ASSISTANT),
]

"""
Text processing for generated scripts and scene code.

- parse_script: splits the <nar>/<viz> script into two aligned sequences.
- SceneCodeValidator: turns a raw model reply into a runnable scene class.
- patch_scene_timing: stretches a scene's animations to a target duration.
"""

import ast
import logging
import re
from dataclasses import dataclass
from typing import List

from errors import GenerationError

NARRATION_BLOCK = re.compile(r"<nar>(.*?)<nar>", re.DOTALL)
VISUALIZATION_BLOCK = re.compile(r"<viz>(.*?)<viz>", re.DOTALL)
MARKUP_TAG = re.compile(r"<.*?>")

PYTHON_FENCE = re.compile(r"```python(.*?)```", re.DOTALL)
ANY_FENCE = re.compile(r"```(.*?)```", re.DOTALL)
FENCE_LANGUAGE = re.compile(r"^[A-Za-z0-9_+-]+\n")


@dataclass
class ParsedScript:
    narrations: List[str]
    visualizations: List[str]

    @property
    def segment_count(self) -> int:
        return min(len(self.narrations), len(self.visualizations))


def _clean_block(text: str) -> str:
    return MARKUP_TAG.sub("", text.strip()).strip()


def parse_script(raw: str) -> ParsedScript:
    """
    Extract narration and visualization blocks in document order.
    Nested markup is stripped and empty blocks are dropped; the two
    sequences are paired by index and nothing else is validated here.
    """
    raw = raw or ""
    narrations = [_clean_block(m) for m in NARRATION_BLOCK.findall(raw)]
    visualizations = [_clean_block(m) for m in VISUALIZATION_BLOCK.findall(raw)]
    return ParsedScript(
        narrations=[n for n in narrations if n],
        visualizations=[v for v in visualizations if v],
    )


def extract_python_code(text: str) -> str:
    """Return the last fenced code block (python fences first), or the raw text."""
    text = text or ""
    python_blocks = PYTHON_FENCE.findall(text)
    if python_blocks:
        return python_blocks[-1].strip()

    generic_blocks = ANY_FENCE.findall(text)
    if generic_blocks:
        return FENCE_LANGUAGE.sub("", generic_blocks[-1].strip(), count=1).strip()

    return text.strip()


def force_class_name(code: str, class_name: str) -> str:
    """
    Rename the first class declaration, whatever the model called it.
    Only the declaring line is rewritten, so comments and docstrings that
    mention a class are left alone.
    """
    classes = [node for node in ast.walk(_parse_scene(code)) if isinstance(node, ast.ClassDef)]
    if not classes:
        raise GenerationError("Generated scene code contains no class declaration.")

    first = min(classes, key=lambda node: (node.lineno, node.col_offset))
    lines = code.split("\n")
    declaration = re.compile(rf"\bclass\s+{re.escape(first.name)}\b")
    lines[first.lineno - 1] = declaration.sub(f"class {class_name}", lines[first.lineno - 1], count=1)
    return "\n".join(lines)


def slugify(text: str, max_length: int = 40) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug[:max_length]


class SceneCodeValidator:
    """Validates and auto-fixes AI-generated Manim scene code."""

    def __init__(self, raw_reply: str, class_name: str):
        self.raw_reply = raw_reply or ""
        self.class_name = class_name
        self.code = ""
        self.fixes_applied = []

    def _extract(self):
        self.code = extract_python_code(self.raw_reply)

    def _force_class_name(self):
        self.code = force_class_name(self.code, self.class_name)

    def _apply_regex_fixes(self):
        # Remove hallucinated self.create() calls
        if "self.create(" in self.code:
            self.code = re.sub(r"self\.create\((.*?)\)", r"\1", self.code)
            self.fixes_applied.append("Removed hallucinated self.create()")

        # Fix incorrect f-string formatting e.g., {var.1f} -> {var:.1f}
        if "{" in self.code and "f}" in self.code:
            self.code, count = re.subn(r"\{(\w+)\.(\d+)f\}", r"{\1:.\2f}", self.code)
            if count:
                self.fixes_applied.append("Fixed f-string format")

    def _auto_inject_imports(self):
        if "from manim import *" not in self.code:
            self.code = "from manim import *\n" + self.code
            self.fixes_applied.append("Auto-injected 'from manim import *'")

        if "from math import *" not in self.code:
            self.code = self.code.replace("from manim import *", "from manim import *\nfrom math import *", 1)

        if "np." in self.code and "import numpy as np" not in self.code:
            self.code = self.code.replace("from manim import *", "from manim import *\nimport numpy as np", 1)
            self.fixes_applied.append("Auto-injected 'import numpy as np'")

    def _validate_syntax(self):
        try:
            ast.parse(self.code)
        except SyntaxError as e:
            error_msg = f"Line {e.lineno}: {e.msg}"
            logging.error(f"❌ Generated scene {self.class_name} has a Syntax Error: {error_msg}")
            raise GenerationError(f"AI generated invalid Python code for {self.class_name}: {error_msg}")

    def run(self) -> str:
        if not self.raw_reply.strip():
            raise GenerationError("AI returned an empty response.")

        self._extract()
        self._apply_regex_fixes()
        self._auto_inject_imports()
        self._validate_syntax()
        self._force_class_name()

        if self.fixes_applied:
            logging.warning(f"🔧 AUTO-FIXES APPLIED to {self.class_name}: {', '.join(self.fixes_applied)}")

        return self.code + "\n"


def _parse_scene(code: str) -> ast.Module:
    try:
        return ast.parse(code)
    except SyntaxError as e:
        raise GenerationError(f"Scene code is not valid Python: Line {e.lineno}: {e.msg}")


def _is_play_call(node: ast.AST) -> bool:
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == "play"
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id == "self"
    )


def _play_calls(tree: ast.AST) -> List[ast.Call]:
    return [node for node in ast.walk(tree) if _is_play_call(node)]


def count_play_calls(code: str) -> int:
    return len(_play_calls(_parse_scene(code)))


def patch_scene_timing(code: str, total_duration: float) -> str:
    """
    Spread `total_duration` evenly over the scene's self.play(...) calls.

    Every play call gets `run_time=<total / plays>`, replacing any run_time it
    already had. The scene is re-emitted from its syntax tree, so comments are
    dropped. A scene without play calls is returned unchanged.
    """
    tree = _parse_scene(code)
    calls = _play_calls(tree)
    if not calls:
        return code

    per_play = round(total_duration / len(calls), 4)
    for call in calls:
        call.keywords = [kw for kw in call.keywords if kw.arg != "run_time"]
        call.keywords.append(ast.keyword(arg="run_time", value=ast.Constant(per_play)))

    return ast.unparse(ast.fix_missing_locations(tree)) + "\n"

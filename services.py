"""
Service classes for the narrated math animation backend.
Contains ContentGenerator, CodeValidator and ManimRunner.
"""

import os
import re
import sys
import json
import time
import shutil
import random
import string
import subprocess
import logging
from typing import Callable, Dict, Iterator, List, Optional

import requests

import config
from errors import ArtifactNotFoundError, RenderError, UpstreamError
from payload import recover_generation
from schemas import GenerationResult, RenderOptions, RenderResult, ValidationResult


def new_render_id(prefix: str) -> str:
    """Timestamp plus random suffix, unique enough for concurrent requests."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class ContentGenerator:
    """Handles AI model communication for explanation and code generation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENROUTER_API_KEY
        self.api_url = api_url or config.OPENROUTER_API_URL
        self.model = model or config.OPENROUTER_MODEL
        self.max_retries = max_retries or config.LLM_MAX_RETRIES

    @staticmethod
    def build_messages(topic: str, difficulty: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": config.SYSTEM_PROMPT},
            {"role": "user", "content": config.EXAMPLE_USER},
            {"role": "assistant", "content": config.EXAMPLE_ASSISTANT},
            {"role": "user", "content": config.USER_PROMPT_TEMPLATE.format(topic=topic, difficulty=difficulty)},
        ]

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": config.SITE_URL,
            "X-Title": config.SITE_NAME,
            "Content-Type": "application/json",
        }

    def _payload(self, topic: str, difficulty: str, stream: bool = False) -> Dict:
        payload = {
            "model": self.model,
            "messages": self.build_messages(topic, difficulty),
            "temperature": 0.7,
            "max_tokens": 4000,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _post(self, payload: Dict, stream: bool = False, retries: Optional[int] = None) -> requests.Response:
        """POST to the provider, backing off 1s, 2s, 4s... on 429 and connection errors."""
        if not self.api_key:
            raise UpstreamError("Language model API key not configured")

        attempts = retries or self.max_retries
        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = requests.post(
                    self.api_url,
                    headers=self._headers(),
                    json=payload,
                    timeout=config.LLM_TIMEOUT,
                    stream=stream,
                )
            except requests.RequestException as e:
                if last_attempt:
                    raise UpstreamError(f"Could not connect to the language model: {e}") from e
                wait = 2 ** attempt
                logging.warning(f"Language model unreachable ({e}). Retrying in {wait}s...")
                time.sleep(wait)
                continue

            if response.status_code == 429 and not last_attempt:
                wait = 2 ** attempt
                logging.warning(f"⏳ Rate limited. Waiting {wait}s before retry...")
                time.sleep(wait)
                continue

            if not response.ok:
                raise UpstreamError(f"Language model API error: {response.status_code} - {response.text}")
            return response

        raise UpstreamError("Failed to call the language model after retries")

    def generate(self, topic: str, difficulty: str = "intermediate") -> GenerationResult:
        """Generate an explanation and Manim code for a topic."""
        logging.info(f"📝 Sending topic to {self.model}: '{topic}' ({difficulty})")
        response = self._post(self._payload(topic, difficulty))

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Language model returned a non-JSON body: {e}") from e

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return recover_generation(content)

    def iter_stream(self, topic: str, difficulty: str = "intermediate") -> Iterator[str]:
        """
        Open a streaming completion and return an iterator over its text chunks.

        The request is sent before this returns, so provider errors are raised
        here rather than on the first iteration.
        """
        response = self._post(self._payload(topic, difficulty, stream=True), stream=True, retries=1)
        return self._iter_events(response)

    @staticmethod
    def _iter_events(response: requests.Response) -> Iterator[str]:
        # server-sent events: "data: {...}" lines, terminated by "data: [DONE]"
        with response:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                data = line[len("data: "):].strip()
                if data == "[DONE]":
                    break
                try:
                    parsed = json.loads(data)
                except ValueError:
                    continue
                choices = parsed.get("choices") or [{}]
                chunk = (choices[0].get("delta") or {}).get("content")
                if chunk:
                    yield chunk

    def stream(self, topic: str, difficulty: str, on_chunk: Callable[[str], None]) -> str:
        chunks = []
        for chunk in self.iter_stream(topic, difficulty):
            on_chunk(chunk)
            chunks.append(chunk)
        return "".join(chunks)


# --------------------------------------------------------------------------
# --- Code Validation ---
# --------------------------------------------------------------------------

REQUIRED_MARKERS = (
    (
        "Manim import statement",
        re.compile(r"from\s+manim\s+import|\bimport\s+manim\b"),
        'Code must include "from manim import *"',
    ),
    (
        "Scene class",
        re.compile(r"class\s+\w+\s*\([^)]*Scene[^)]*\)"),
        "Code must define a class that inherits from Scene",
    ),
    (
        "construct method",
        re.compile(r"def\s+construct\s*\(\s*self"),
        "Scene class must have a construct(self) method",
    ),
)

FORBIDDEN_PATTERNS = (
    (re.compile(r"MathTex\s*\(", re.IGNORECASE), "MathTex()"),
    (re.compile(r"\bTex\s*\(", re.IGNORECASE), "Tex()"),
    (re.compile(r"\\frac", re.IGNORECASE), "LaTeX \\frac"),
    (re.compile(r"\\sqrt", re.IGNORECASE), "LaTeX \\sqrt"),
    (re.compile(r"\\sum", re.IGNORECASE), "LaTeX \\sum"),
    (re.compile(r"\\int", re.IGNORECASE), "LaTeX \\int"),
    (re.compile(r"\\begin\{", re.IGNORECASE), "LaTeX environment"),
    (re.compile(r"\\end\{", re.IGNORECASE), "LaTeX environment"),
    (re.compile(r"\$\$[^$]+\$\$"), "LaTeX math mode"),
    (re.compile(r"\$[^$\n]+\$"), "LaTeX math mode"),
)

ADVANCED_FEATURES = {
    "transform": re.compile(r"Transform\s*\(", re.IGNORECASE),
    "animationGroup": re.compile(r"AnimationGroup\s*\(", re.IGNORECASE),
    "vgroup": re.compile(r"VGroup\s*\(", re.IGNORECASE),
    "rotate": re.compile(r"Rotate\s*\(", re.IGNORECASE),
    "colorStyling": re.compile(r"set_fill\s*\(|set_stroke\s*\(", re.IGNORECASE),
    "lagRatio": re.compile(r"lag_ratio\s*=", re.IGNORECASE),
    "scaling": re.compile(r"\.animate\.scale\s*\(", re.IGNORECASE),
}

POSITIONING = re.compile(r"\.move_to\s*\(|\.shift\s*\(|\.next_to\s*\(", re.IGNORECASE)
CLEANUP = re.compile(r"FadeOut\s*\(", re.IGNORECASE)
MIN_SCRIPT_LENGTH = 50
SCENE_CLASS = re.compile(r"class\s+(\w+)\s*\(\s*\w*Scene\s*\)")
SYNTAX_CHECK = "import sys; compile(sys.stdin.read(), 'scene.py', 'exec')"


def strip_markdown(code: str) -> str:
    return re.sub(r"```(?:python)?\n?|```", "", code).strip()


def extract_scene_class_name(code: str) -> Optional[str]:
    match = SCENE_CLASS.search(code)
    return match.group(1) if match else None


def ensure_complete_code(code: str) -> str:
    """Wrap a bare construct() body in an importable scene if needed."""
    code = strip_markdown(code or "")
    has_imports = "from manim import" in code or "import manim" in code
    has_scene_class = "class" in code and "Scene" in code
    if has_imports and has_scene_class:
        return code

    body = "\n".join("        " + line for line in code.split("\n"))
    return f"from manim import *\n\nclass GeneratedScene(Scene):\n    def construct(self):\n{body}\n"


class CodeValidator:
    """Static checks on AI-generated Manim code before it is rendered."""

    def __init__(
        self,
        code: str,
        required_markers=REQUIRED_MARKERS,
        forbidden_patterns=FORBIDDEN_PATTERNS,
    ):
        self.code = code or ""
        self.required_markers = required_markers
        self.forbidden_patterns = forbidden_patterns

    def _check_markers(self) -> Optional[str]:
        for name, pattern, hint in self.required_markers:
            if not pattern.search(self.code):
                return f"Missing {name}. {hint}"
        return None

    def _check_forbidden(self) -> Optional[str]:
        for pattern, name in self.forbidden_patterns:
            if pattern.search(self.code):
                return (
                    f"Code contains forbidden {name}. ONLY use Text() and simple shapes "
                    "(Circle, Square, Line, etc). NO LaTeX or MathTex allowed."
                )
        return None

    def _check_syntax(self) -> Optional[str]:
        """Compile the script in a separate interpreter; the source goes over stdin."""
        try:
            result = subprocess.run(
                [sys.executable, "-c", SYNTAX_CHECK],
                input=self.code,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError) as e:
            return f"Validation failed: {e}"

        if result.returncode != 0:
            lines = (result.stderr or result.stdout).strip().splitlines()
            message = "\n".join(lines[-3:]) or "compile failed"
            return f"Python syntax error: {message}"
        return None

    def _log_quality_signals(self):
        used = [name for name, pattern in ADVANCED_FEATURES.items() if pattern.search(self.code)]
        if used:
            logging.info(f"✨ Advanced Manim features detected: {', '.join(used)}")
            logging.info(f"🎯 Animation quality score: {len(used)}/{len(ADVANCED_FEATURES)} advanced techniques used")
        else:
            logging.info("Basic animation only - no advanced features detected.")

        if not POSITIONING.search(self.code):
            logging.warning("⚠️  No positioning methods detected. Objects may go off-screen.")
        if not CLEANUP.search(self.code):
            logging.warning("⚠️  No FadeOut detected. Screen may become cluttered.")

    def validate(self, deep: bool = False) -> ValidationResult:
        error = self._check_markers() or self._check_forbidden()
        if error is None and len(self.code.strip()) < MIN_SCRIPT_LENGTH:
            error = "Code is too short to be valid"
        if error is None and deep:
            error = self._check_syntax()

        if error:
            logging.error(f"❌ Validation failed: {error}")
            return ValidationResult(valid=False, error=error)

        self._log_quality_signals()
        return ValidationResult(valid=True)


# --------------------------------------------------------------------------
# --- Manim Runner ---
# --------------------------------------------------------------------------

QUALITY_FLAGS = {
    "low": "-ql",
    "medium": "-qm",
    "high": "-qh",
    "production": "-qk",
}

# Checked in order against the combined manim output.
RENDER_ERROR_CATEGORIES = (
    ("ModuleNotFoundError", "Manim module not found. Please ensure Manim is installed correctly."),
    ("SyntaxError", "Python syntax error in generated code."),
    ("AttributeError", "Invalid Manim method or attribute used."),
    ("FileNotFoundError", "File or resource not found during rendering."),
)


def classify_render_error(logs: str) -> str:
    for marker, message in RENDER_ERROR_CATEGORIES:
        if marker in logs:
            return message
    last_line = logs.strip().splitlines()[-1] if logs.strip() else "Unknown Manim error"
    return f"Manim rendering failed: {last_line}"


class ManimRunner:
    """Handles the execution of Manim animations."""

    def __init__(
        self,
        code: str,
        options: Optional[RenderOptions] = None,
        temp_dir: Optional[str] = None,
        media_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
    ):
        self.code = code
        self.options = options or RenderOptions()
        self.temp_dir = temp_dir or config.TEMP_DIR
        self.media_dir = media_dir or config.MEDIA_DIR
        self.output_dir = output_dir or config.ANIMATIONS_DIR
        self.render_id = new_render_id("manim")
        self.script_path = os.path.join(self.temp_dir, f"{self.render_id}.py")

    @property
    def output_name(self) -> str:
        return f"{self.render_id}.{self.options.format}"

    def build_command(self) -> List[str]:
        command = [sys.executable, "-m", "manim", QUALITY_FLAGS[self.options.quality]]
        if self.options.transparent:
            command.append("--transparent")
        command += [
            "--fps", str(self.options.fps),
            "--format", self.options.format,
            "--media_dir", self.media_dir,
            "-o", self.output_name,
            self.script_path,
        ]
        scene_name = extract_scene_class_name(self.code)
        if scene_name:
            command.append(scene_name)
        return command

    def _write_script_to_file(self):
        os.makedirs(self.temp_dir, exist_ok=True)
        with open(self.script_path, "w", encoding="utf-8") as f:
            f.write(self.code)

    def _cleanup(self):
        # Remove the generated script file
        try:
            if os.path.exists(self.script_path):
                os.remove(self.script_path)
        except OSError as e:
            logging.warning(f"Could not delete script file: {e}")

    def _execute(self) -> str:
        command = self.build_command()
        logging.info(f"🎬 Running Manim command: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=config.RENDER_TIMEOUT,
                check=True,
                env=os.environ.copy(),
            )
        except subprocess.CalledProcessError as e:
            logs = (e.stdout or "") + (e.stderr or "")
            logging.error(f"❌ Manim rendering failed. Output:\n{logs[-2000:]}")
            raise RenderError(classify_render_error(logs), logs=logs) from e
        except subprocess.TimeoutExpired as e:
            logging.error("❌ Manim rendering timed out.")
            raise RenderError("Rendering timed out after 5 minutes.") from e
        except OSError as e:
            raise RenderError(f"Could not start Manim: {e}") from e

        if result.stderr:
            logging.warning(f"Manim stderr output: {result.stderr[:500]}")
        logging.info("✅ Manim rendering completed successfully!")
        return (result.stdout or "") + (result.stderr or "")

    def _find_video_file(self) -> str:
        """Manim writes media/videos/<script_stem>/<quality>/<output name>; search the whole tree."""
        videos_dir = os.path.join(self.media_dir, "videos")
        names = {self.output_name}
        if self.options.transparent:
            # transparent mp4 renders are written as .mov
            names.add(f"{self.render_id}.mov")

        candidates = []
        for root, _, files in os.walk(videos_dir):
            for fname in files:
                if fname in names:
                    return os.path.join(root, fname)
                if fname.endswith(f".{self.options.format}"):
                    candidates.append(os.path.join(root, fname))

        logging.error(f"Video not found. {self.options.format} files under {videos_dir}: {candidates or 'none'}")
        raise ArtifactNotFoundError("Generated video not found in media directory")

    def _publish(self, video_file: str) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        filename = os.path.basename(video_file)
        shutil.move(video_file, os.path.join(self.output_dir, filename))
        return f"{config.ANIMATIONS_URL}/{filename}"

    def run(self) -> RenderResult:
        logs = ""
        try:
            self._write_script_to_file()
            logs = self._execute()
            video_path = self._publish(self._find_video_file())
            logging.info(f"🎥 Video ready at {video_path}")
            return RenderResult(success=True, video_path=video_path, logs=logs)
        except RenderError as e:
            logging.error(f"[Manim] Render error: {e.message}")
            return RenderResult(success=False, error=e.message, logs=e.logs or logs)
        finally:
            self._cleanup()

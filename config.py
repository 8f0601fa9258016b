"""
Configuration file for the narrated math animation backend.
Contains all global constants and prompt engineering templates.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# --- Constants ---
OPENROUTER_API_URL = os.getenv("OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "qwen/qwen-2.5-72b-instruct:free")
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000")
SITE_NAME = os.getenv("SITE_NAME", "manim-math-narrator")

ELEVENLABS_API_URL = os.getenv("ELEVENLABS_API_URL", "https://api.elevenlabs.io/v1")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")  # Rachel
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")

PROJECT_ROOT = os.getenv("PROJECT_ROOT", os.getcwd())
PUBLIC_DIR = os.path.join(PROJECT_ROOT, "public")
ANIMATIONS_DIR = os.path.join(PUBLIC_DIR, "animations")
TEMP_DIR = os.path.join(PROJECT_ROOT, "temp")
MEDIA_DIR = os.path.join(PROJECT_ROOT, "media")
ANIMATIONS_URL = "/animations"

LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_TIMEOUT = 180
RENDER_TIMEOUT = 300
SYNC_TIMEOUT = 300
TTS_TIMEOUT = 60

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")

# --- Prompt Engineering Section ---

SYSTEM_PROMPT = """You are an expert mathematics educator and Manim Community Edition animator.
You explain a math topic and write ONE Manim scene that visualises it.

VERY IMPORTANT RULES:
1.  Respond ONLY with a JSON object: {"explanation": "...", "manimCode": "..."}.
2.  The code MUST start with `from manim import *` and define exactly one class inheriting from `Scene`
    with a `construct(self)` method.
3.  Use a dark background: `self.camera.background_color = "#0C0D0F"`.
4.  Use Text() for ALL text. NEVER use MathTex() or Tex() and never write LaTeX (\\frac, \\sqrt, $...$).
5.  Allowed shapes: Circle, Square, Rectangle, Line, Dot, Arrow, Polygon, Triangle, Arc.
6.  Position every object with .move_to(), .shift() or .next_to() and keep it inside x in [-6, 6], y in [-3, 3].
7.  Store every object in a variable before animating it. Only FadeOut variables you created.
8.  Never show more than 3 objects at once. FadeOut old objects before showing new ones.
9.  Prefer Transform, AnimationGroup with lag_ratio, VGroup and rate_func=smooth for motion.
10. Pacing: Create/Write 1.5-2.5s, Transform 2-3s, wait 1-1.5s between ideas. Aim for ~30 seconds total.
"""

USER_PROMPT_TEMPLATE = """Create a math animation for: "{topic}"

Difficulty level: {difficulty}

Structure it as: a hook question, intuition built layer by layer, the key reveal, a short conclusion.
Return in this EXACT JSON format:
{{
  "explanation": "Engaging 2-3 paragraph explanation for {difficulty} level students",
  "manimCode": "Complete working Manim code using ONLY Text and simple shapes"
}}"""

# --- Examples ---
EXAMPLE_USER = USER_PROMPT_TEMPLATE.format(topic="Pythagorean theorem", difficulty="basic")
EXAMPLE_ASSISTANT = """{
  "explanation": "In a right triangle the squares built on the two shorter sides together cover exactly the same area as the square on the longest side.",
  "manimCode": "from manim import *\\n\\nclass PythagorasScene(Scene):\\n    def construct(self):\\n        self.camera.background_color = \\"#0C0D0F\\"\\n        title = Text(\\"Pythagorean Theorem\\", font_size=48, color=\\"#ECECEC\\")\\n        title.move_to(ORIGIN)\\n        self.play(Write(title), run_time=2)\\n        self.wait(1)\\n        self.play(FadeOut(title))\\n        triangle = Polygon([-2, -1.5, 0], [2, -1.5, 0], [2, 1.5, 0], color=BLUE, fill_opacity=0.3)\\n        triangle.move_to(ORIGIN)\\n        self.play(Create(triangle), run_time=2)\\n        formula = Text(\\"a squared + b squared = c squared\\", font_size=36, color=YELLOW)\\n        formula.next_to(triangle, DOWN)\\n        self.play(Write(formula), run_time=2)\\n        self.wait(2)\\n        self.play(FadeOut(triangle), FadeOut(formula))\\n"
}"""

# tests/conftest.py

import os
import sys

import pytest

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config  # noqa: E402

VALID_SCRIPT = """from manim import *

class CircleScene(Scene):
    def construct(self):
        circle = Circle(color=BLUE).move_to(ORIGIN)
        label = Text("A circle", font_size=36).next_to(circle, DOWN)
        self.play(Create(circle), Write(label))
        self.wait(1)
        self.play(FadeOut(circle), FadeOut(label))
"""


@pytest.fixture
def valid_script():
    return VALID_SCRIPT


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Point every directory the services touch at a temporary tree."""
    public = tmp_path / "public"
    dirs = {
        "PUBLIC_DIR": public,
        "ANIMATIONS_DIR": public / "animations",
        "TEMP_DIR": tmp_path / "temp",
        "MEDIA_DIR": tmp_path / "media",
    }
    for name, path in dirs.items():
        path.mkdir(parents=True, exist_ok=True)
        monkeypatch.setattr(config, name, str(path))
    return dirs

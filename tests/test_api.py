# tests/test_api.py

import base64

import pytest
from fastapi.testclient import TestClient

import routers.generation as generation
from errors import InputError, UpstreamError
from main import app
from schemas import GenerationResult, RenderResult, SpeechResult, SyncResult


class FakeGenerator:
    def generate(self, topic, difficulty):
        return GenerationResult(explanation=f"All about {topic}.", script=FakeGenerator.script)


class FakeRunner:
    """Records every render attempt; fails the attempts listed in `failures`."""

    attempts = []
    failures = 0

    def __init__(self, code, options):
        self.options = options

    def run(self):
        FakeRunner.attempts.append(self.options.quality)
        if len(FakeRunner.attempts) <= FakeRunner.failures:
            return RenderResult(
                success=False,
                error="Manim rendering failed: boom",
                logs="NameError: name 'square' is not defined",
            )
        return RenderResult(success=True, video_path="/animations/manim_1_abc.mp4", logs="done")


class FakeNarrator:
    def synthesize(self, text, voice):
        return b"mp3"

    def synthesize_with_alignment(self, text, voice):
        return SpeechResult(audio=b"mp3", alignment={"characters": ["H"]})


class FakeSynchronizer:
    calls = []

    def sync(self, video_url, audio_bytes, options):
        FakeSynchronizer.calls.append((video_url, audio_bytes, options))
        return SyncResult(success=True, output_path="/animations/sync_1_abc_final.mp4")


@pytest.fixture
def client(valid_script, workspace, monkeypatch):
    FakeGenerator.script = valid_script
    FakeRunner.attempts = []
    FakeRunner.failures = 0
    FakeSynchronizer.calls = []
    monkeypatch.setattr(generation, "ContentGenerator", FakeGenerator)
    monkeypatch.setattr(generation, "ManimRunner", FakeRunner)
    monkeypatch.setattr(generation, "NarrationService", FakeNarrator)
    monkeypatch.setattr(generation, "MediaSynchronizer", FakeSynchronizer)
    return TestClient(app)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "running" in response.json()["status"]


def test_generate(client, valid_script):
    response = client.post("/generate", json={"topic": "Derivatives", "difficulty": "basic"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["explanation"] == "All about Derivatives."
    assert body["data"]["script"] == valid_script


@pytest.mark.parametrize("body", [{}, {"topic": ""}, {"topic": "   "}])
def test_generate_requires_topic(client, body):
    response = client.post("/generate", json=body)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Topic is required"}


def test_generate_rejects_unknown_difficulty(client):
    response = client.post("/generate", json={"topic": "Limits", "difficulty": "expert"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_generate_upstream_failure_is_500(client, monkeypatch):
    class DownGenerator:
        def generate(self, topic, difficulty):
            raise UpstreamError("Language model API error: 503 - unavailable")

    monkeypatch.setattr(generation, "ContentGenerator", DownGenerator)
    response = client.post("/generate", json={"topic": "Limits"})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Language model API error: 503 - unavailable"}


def test_render_success(client, valid_script):
    response = client.post("/render", json={"code": valid_script})
    assert response.status_code == 200
    assert response.json()["videoPath"] == "/animations/manim_1_abc.mp4"
    assert FakeRunner.attempts == ["medium"]


def test_render_requires_code(client):
    response = client.post("/render", json={"quality": "high"})
    assert response.status_code == 400
    assert response.json()["error"] == "Manim code is required"


def test_render_rejects_latex_before_running_manim(client, valid_script):
    code = valid_script.replace('Text("A circle", font_size=36)', 'MathTex("x^2")')
    response = client.post("/render", json={"code": code})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid Manim code"
    assert "MathTex" in body["details"]
    assert "MathTex" in body["code"]
    assert FakeRunner.attempts == []


def test_render_retries_once_at_low_quality(client, valid_script):
    FakeRunner.failures = 1
    response = client.post("/render", json={"code": valid_script, "quality": "medium"})
    assert response.status_code == 200
    assert FakeRunner.attempts == ["medium", "low"]


def test_render_failure_after_retry_is_reported(client, valid_script):
    FakeRunner.failures = 2
    response = client.post("/render", json={"code": valid_script, "quality": "high"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Code error: Variable used before being defined."
    assert body["technicalError"] == "Manim rendering failed: boom"
    assert "NameError" in body["logs"]
    assert FakeRunner.attempts == ["high", "low"]


def test_render_at_low_quality_is_not_retried(client, valid_script):
    FakeRunner.failures = 1
    response = client.post("/render", json={"code": valid_script, "quality": "low"})
    assert response.status_code == 500
    assert FakeRunner.attempts == ["low"]


def test_render_with_retry_count_is_not_retried(client, valid_script):
    FakeRunner.failures = 1
    response = client.post("/render", json={"code": valid_script, "quality": "high", "retryCount": 1})
    assert response.status_code == 500
    assert FakeRunner.attempts == ["high"]


def test_audio(client):
    response = client.post("/audio", json={"text": "Hello"})
    assert response.status_code == 200
    assert base64.b64decode(response.json()["audio"]) == b"mp3"


def test_audio_with_timestamps(client):
    response = client.post("/audio", json={"text": "Hello", "withTimestamps": True})
    body = response.json()
    assert body["alignment"] == {"characters": ["H"]}
    assert base64.b64decode(body["audio"]) == b"mp3"


def test_audio_requires_text(client):
    response = client.post("/audio", json={"voiceId": "abc"})
    assert response.status_code == 400
    assert response.json()["error"] == "Text is required"


def test_sync(client):
    audio = base64.b64encode(b"mp3").decode()
    response = client.post(
        "/sync",
        json={"videoPath": "/animations/manim_1_abc.mp4", "audioData": audio, "fadeIn": False, "volume": 0.5},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "outputPath": "/animations/sync_1_abc_final.mp4"}
    video_url, audio_bytes, options = FakeSynchronizer.calls[0]
    assert video_url == "/animations/manim_1_abc.mp4"
    assert audio_bytes == b"mp3"
    assert options.fade_in is False
    assert options.fade_out is True
    assert options.volume == 0.5


@pytest.mark.parametrize(
    "body",
    [
        {"audioData": "bXAz"},
        {"videoPath": "/animations/a.mp4"},
        {"videoPath": "/animations/a.mp4", "audioData": "not base64!"},
    ],
)
def test_sync_rejects_bad_input(client, body):
    response = client.post("/sync", json=body)
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert FakeSynchronizer.calls == []


def test_serves_published_animation(client, workspace):
    (workspace["ANIMATIONS_DIR"] / "manim_1_abc.mp4").write_bytes(b"video")
    response = client.get("/animations/manim_1_abc.mp4")
    assert response.status_code == 200
    assert response.content == b"video"
    assert response.headers["content-type"] == "video/mp4"


def test_missing_animation_is_404(client):
    assert client.get("/animations/nope.mp4").status_code == 404


def test_missing_animation_uses_standard_error_body(client):
    response = client.get("/animations/nope.mp4")
    assert response.json() == {"success": False, "error": "Video file not found."}


def test_animation_outside_directory_is_forbidden(workspace):
    with pytest.raises(InputError) as excinfo:
        generation.get_animation("../secret.mp4")
    assert excinfo.value.status_code == 403

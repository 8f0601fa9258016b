"""
Router for the animation pipeline endpoints.
Handles content generation, rendering, narration and audio/video sync.
"""

import os
import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import FileResponse, StreamingResponse

import config
from errors import InputError, PipelineError, RenderError, SyncError, ValidationError
from media_sync import MediaSynchronizer
from narration import NarrationService
from schemas import (
    AudioRequest,
    CaptionsRequest,
    GenerateRequest,
    RenderOptions,
    RenderRequest,
    RenderResult,
    RetimeRequest,
    SyncOptions,
    SyncRequest,
    VoiceOptions,
)
from services import CodeValidator, ContentGenerator, ManimRunner, ensure_complete_code

# Create the router
router = APIRouter(tags=["generation"])

LOWEST_QUALITY = "low"

# Friendlier wording for the errors generated code most often hits.
RENDER_ERROR_HINTS = (
    (("Animation only works on Mobjects",), "Code error: Tried to animate a variable that doesn't exist."),
    (("TypeError",), "Code error: Type mismatch in the generated code."),
    (("NameError", "not defined"), "Code error: Variable used before being defined."),
    (("AttributeError",), "Code error: Invalid method or property used."),
    (("SyntaxError",), "Code error: Python syntax issue in the generated code."),
)

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".gif": "image/gif",
}


def friendly_render_error(error: Optional[str], logs: Optional[str]) -> str:
    logs = logs or ""
    for markers, message in RENDER_ERROR_HINTS:
        if any(marker in logs for marker in markers):
            return message
    return error or "Failed to render animation"


def should_retry(result: RenderResult, retry_count: int, quality: str) -> bool:
    """One downgrade retry: only after a first failure at a quality above the lowest tier."""
    return not result.success and retry_count == 0 and quality != LOWEST_QUALITY


def _decode_audio(audio_data: str) -> bytes:
    try:
        return base64.b64decode(audio_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputError("audioData must be base64 encoded") from e


def _unexpected(action: str, e: Exception) -> PipelineError:
    logging.exception(f"❌ Unexpected error while trying to {action}")
    return PipelineError(f"Failed to {action}: {e}")


@router.get("/")
def read_root():
    return {"status": "🚀 Manim math narrator is running!"}


@router.post("/generate")
def generate(request: GenerateRequest):
    """Generate an explanation and a Manim script for a math topic."""
    if not request.topic or not request.topic.strip():
        raise InputError("Topic is required")

    try:
        result = ContentGenerator().generate(request.topic.strip(), request.difficulty)
    except PipelineError:
        raise
    except Exception as e:
        raise _unexpected("generate content", e)

    logging.info(f"✨ Generated {len(result.script)} characters of Manim code for '{request.topic}'")
    return {
        "success": True,
        "data": {
            "explanation": result.explanation,
            "script": result.script,
            "reasoning": result.reasoning,
        },
    }


@router.post("/generate/stream")
def generate_stream(request: GenerateRequest):
    """Stream the raw model text as it is produced."""
    if not request.topic or not request.topic.strip():
        raise InputError("Topic is required")
    chunks = ContentGenerator().iter_stream(request.topic.strip(), request.difficulty)
    return StreamingResponse(chunks, media_type="text/plain; charset=utf-8")


@router.post("/render")
def render(request: RenderRequest):
    """
    Validate and render a Manim script.

    A failed first attempt above the lowest quality tier is retried once at
    low quality before the failure is reported.
    """
    if not request.code or not request.code.strip():
        raise InputError("Manim code is required")

    logging.info(f"[Render] Attempt {request.retry_count + 1}: starting render with quality: {request.quality}")
    complete_code = ensure_complete_code(request.code)

    try:
        validation = CodeValidator(complete_code).validate(deep=True)
        if not validation.valid:
            logging.error(f"[Render] Code that failed validation:\n{complete_code[:500]}...")
            raise ValidationError(validation.error, complete_code)

        options = RenderOptions(
            quality=request.quality,
            format=request.format,
            fps=request.fps,
            transparent=request.transparent,
        )
        result = ManimRunner(complete_code, options).run()

        if should_retry(result, request.retry_count, request.quality):
            logging.warning("[Render] First attempt failed, retrying with lower quality...")
            low_options = options.model_copy(update={"quality": LOWEST_QUALITY})
            result = ManimRunner(complete_code, low_options).run()
    except PipelineError:
        raise
    except Exception as e:
        raise _unexpected("render animation", e)

    if not result.success:
        logging.error(f"[Render] Render failed: {result.error}")
        raise RenderError(
            friendly_render_error(result.error, result.logs),
            logs=result.logs or "",
            technical_error=result.error,
        )

    logging.info(f"[Render] Render successful: {result.video_path}")
    return {"success": True, "videoPath": result.video_path, "logs": result.logs}


@router.post("/audio")
def audio(request: AudioRequest):
    """Synthesize narration; optionally with character timing for captions."""
    if not request.text or not request.text.strip():
        raise InputError("Text is required")

    voice = VoiceOptions(
        voice_id=request.voice_id,
        stability=request.stability,
        similarity_boost=request.similarity_boost,
    )
    narrator = NarrationService()
    try:
        if request.with_timestamps:
            speech = narrator.synthesize_with_alignment(request.text, voice)
            return {
                "success": True,
                "audio": base64.b64encode(speech.audio).decode("ascii"),
                "alignment": speech.alignment,
            }
        audio_bytes = narrator.synthesize(request.text, voice)
    except PipelineError:
        raise
    except Exception as e:
        raise _unexpected("generate audio", e)

    return {"success": True, "audio": base64.b64encode(audio_bytes).decode("ascii")}


@router.post("/audio/stream")
def audio_stream(request: AudioRequest):
    if not request.text or not request.text.strip():
        raise InputError("Text is required")
    voice = VoiceOptions(
        voice_id=request.voice_id,
        stability=request.stability,
        similarity_boost=request.similarity_boost,
    )
    return StreamingResponse(NarrationService().stream(request.text, voice), media_type="audio/mpeg")


@router.get("/voices")
def voices():
    return {"success": True, "voices": NarrationService().list_voices()}


@router.post("/sync")
def sync(request: SyncRequest):
    """Mux narration audio onto a rendered animation."""
    if not request.video_path or not request.audio_data:
        raise InputError("Video path and audio data are required")

    audio_bytes = _decode_audio(request.audio_data)
    options = SyncOptions(fade_in=request.fade_in, fade_out=request.fade_out, volume=request.volume)
    try:
        result = MediaSynchronizer().sync(request.video_path, audio_bytes, options)
    except PipelineError:
        raise
    except Exception as e:
        raise _unexpected("sync video and audio", e)

    if not result.success:
        raise SyncError(result.error or "Failed to sync video and audio")
    return {"success": True, "outputPath": result.output_path}


@router.post("/captions")
def captions(request: CaptionsRequest):
    """Burn subtitle cues into a rendered video."""
    if not request.video_path or not request.captions:
        raise InputError("Video path and captions are required")

    result = MediaSynchronizer().add_captions(request.video_path, request.captions)
    if not result.success:
        raise SyncError(result.error or "Failed to add captions")
    return {"success": True, "outputPath": result.output_path}


@router.post("/retime")
def retime(request: RetimeRequest):
    """Speed a video up or down to last targetDuration seconds."""
    if not request.video_path or not request.target_duration:
        raise InputError("Video path and target duration are required")

    result = MediaSynchronizer().adjust_speed(request.video_path, request.target_duration)
    if not result.success:
        raise SyncError(result.error or "Failed to adjust video speed")
    return {"success": True, "outputPath": result.output_path}


@router.get("/animations/{filename}")
def get_animation(filename: str):
    """
    Safely serves a produced animation from the public animations directory.
    """
    animations_dir = os.path.abspath(config.ANIMATIONS_DIR)
    path = os.path.abspath(os.path.join(animations_dir, filename))
    # Security Check: the requested file must live directly in the animations directory.
    if os.path.dirname(path) != animations_dir:
        raise InputError("Forbidden: Access to this path is not allowed.", status_code=403)

    if not os.path.isfile(path):
        raise PipelineError("Video file not found.", status_code=404)

    media_type = MEDIA_TYPES.get(os.path.splitext(path)[1].lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type, filename=filename)

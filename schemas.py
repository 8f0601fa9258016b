"""
Pydantic models for data validation in the narrated math animation backend.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["basic", "intermediate", "advanced"]
Quality = Literal["low", "medium", "high", "production"]
VideoFormat = Literal["mp4", "mov", "gif"]


class CamelModel(BaseModel):
    """Accepts both the camelCase wire names and the Python field names."""
    model_config = ConfigDict(populate_by_name=True)


# --- Pipeline values ---

class GenerationResult(BaseModel):
    """Explanation and Manim script recovered from the language model."""
    explanation: str
    script: str
    reasoning: str = ""


class ValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None


class RenderOptions(BaseModel):
    quality: Quality = "high"
    format: VideoFormat = "mp4"
    transparent: bool = False
    fps: int = Field(60, gt=0)


class RenderResult(BaseModel):
    success: bool
    video_path: Optional[str] = None  # public URL, e.g. /animations/<id>.mp4
    error: Optional[str] = None
    logs: Optional[str] = None


class VoiceOptions(CamelModel):
    voice_id: Optional[str] = Field(None, alias="voiceId")
    model_id: Optional[str] = Field(None, alias="modelId")
    stability: float = 0.5
    similarity_boost: float = Field(0.75, alias="similarityBoost")
    style: float = 0.5
    use_speaker_boost: bool = Field(True, alias="useSpeakerBoost")


class SpeechResult(BaseModel):
    audio: bytes
    alignment: Optional[Any] = None


class SyncOptions(CamelModel):
    fade_in: bool = Field(True, alias="fadeIn")
    fade_out: bool = Field(True, alias="fadeOut")
    volume: float = Field(1.0, gt=0)


class SyncResult(BaseModel):
    success: bool
    output_path: Optional[str] = None
    error: Optional[str] = None


class Caption(CamelModel):
    text: str
    start_time: float = Field(..., alias="startTime", ge=0)
    end_time: float = Field(..., alias="endTime", ge=0)


class ChatMessage(BaseModel):
    """A single turn held in a chat session; never stored server-side."""
    id: str
    role: Literal["user", "assistant"]
    text: str
    video_path: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


# --- Request bodies ---

class GenerateRequest(CamelModel):
    """Request model for generating an explanation and a Manim script."""
    topic: Optional[str] = None
    difficulty: Difficulty = "intermediate"


class RenderRequest(CamelModel):
    """Request model for rendering a Manim script."""
    code: Optional[str] = None
    quality: Quality = "medium"
    format: VideoFormat = "mp4"
    retry_count: int = Field(0, alias="retryCount", ge=0)
    fps: int = Field(60, gt=0)
    transparent: bool = False


class AudioRequest(CamelModel):
    """Request model for narration audio."""
    text: Optional[str] = None
    voice_id: Optional[str] = Field(None, alias="voiceId")
    with_timestamps: bool = Field(False, alias="withTimestamps")
    stability: float = 0.5
    similarity_boost: float = Field(0.75, alias="similarityBoost")


class SyncRequest(CamelModel):
    """Request model for muxing narration onto a rendered animation."""
    video_path: Optional[str] = Field(None, alias="videoPath")
    audio_data: Optional[str] = Field(None, alias="audioData")  # base64
    fade_in: bool = Field(True, alias="fadeIn")
    fade_out: bool = Field(True, alias="fadeOut")
    volume: float = Field(1.0, gt=0)


class CaptionsRequest(CamelModel):
    video_path: Optional[str] = Field(None, alias="videoPath")
    captions: List[Caption] = []


class RetimeRequest(CamelModel):
    video_path: Optional[str] = Field(None, alias="videoPath")
    target_duration: Optional[float] = Field(None, alias="targetDuration", gt=0)

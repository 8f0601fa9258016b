"""
Application errors for the animation pipeline.

Every error carries the HTTP status code it maps to and renders itself as the
``{"success": false, "error": ...}`` body the endpoints return.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class InputError(PipelineError):
    """Missing or invalid request fields."""

    status_code = 400


class UpstreamError(PipelineError):
    """A provider was unreachable or answered with a non-success status."""


class ParseError(PipelineError):
    """No usable payload could be recovered from a provider response."""


class ValidationError(PipelineError):
    """Generated script failed the static checks."""

    status_code = 400

    def __init__(self, details: str, code: str = ""):
        super().__init__("Invalid Manim code")
        self.details = details
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["details"] = self.details
        body["code"] = self.code
        return body


class RenderError(PipelineError):
    """Manim failed or its output could not be located."""

    def __init__(self, message: str, logs: str = "", technical_error: Optional[str] = None):
        super().__init__(message)
        self.logs = logs
        self.technical_error = technical_error or message

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["logs"] = self.logs
        body["technicalError"] = self.technical_error
        return body


class ArtifactNotFoundError(RenderError):
    """Manim exited cleanly but the expected video file is missing."""


class SyncError(PipelineError):
    """ffmpeg/ffprobe failed while combining or adjusting media."""

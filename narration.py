"""
ElevenLabs text-to-speech client used to narrate the explanations.
"""

import base64
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

import config
from errors import UpstreamError
from schemas import SpeechResult, VoiceOptions


class NarrationService:
    """Thin wrapper around the ElevenLabs REST API. No retries at this layer."""

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.ELEVENLABS_API_KEY
        self.api_url = (api_url or config.ELEVENLABS_API_URL).rstrip("/")

    def _headers(self, accept: str) -> Dict[str, str]:
        if not self.api_key:
            raise UpstreamError("ElevenLabs API key not configured")
        return {
            "Accept": accept,
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _body(text: str, voice: VoiceOptions) -> Dict[str, Any]:
        return {
            "text": text,
            "model_id": voice.model_id or config.ELEVENLABS_MODEL_ID,
            "voice_settings": {
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
                "style": voice.style,
                "use_speaker_boost": voice.use_speaker_boost,
            },
        }

    def _speech_url(self, voice: VoiceOptions, suffix: str = "") -> str:
        voice_id = voice.voice_id or config.ELEVENLABS_VOICE_ID
        return f"{self.api_url}/text-to-speech/{voice_id}{suffix}"

    def _post(self, url: str, text: str, voice: VoiceOptions, accept: str, stream: bool = False) -> requests.Response:
        try:
            response = requests.post(
                url,
                headers=self._headers(accept),
                json=self._body(text, voice),
                timeout=config.TTS_TIMEOUT,
                stream=stream,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Could not connect to ElevenLabs: {e}") from e

        if not response.ok:
            logging.error(f"ElevenLabs API error: {response.status_code}")
            raise UpstreamError(f"ElevenLabs API error: {response.status_code} - {response.text}")
        return response

    def synthesize(self, text: str, voice: Optional[VoiceOptions] = None) -> bytes:
        """Generate speech from text and return the mp3 bytes."""
        voice = voice or VoiceOptions()
        logging.info(f"🔊 Synthesizing {len(text)} characters of narration")
        response = self._post(self._speech_url(voice), text, voice, accept="audio/mpeg")
        return response.content

    def synthesize_with_alignment(self, text: str, voice: Optional[VoiceOptions] = None) -> SpeechResult:
        """
        Generate speech together with character-level timing.

        The alignment structure is returned exactly as ElevenLabs sends it.
        """
        voice = voice or VoiceOptions()
        response = self._post(self._speech_url(voice, "/with-timestamps"), text, voice, accept="application/json")
        try:
            data = response.json()
            audio = base64.b64decode(data["audio_base64"])
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError(f"Unexpected ElevenLabs response: {e}") from e
        return SpeechResult(audio=audio, alignment=data.get("alignment"))

    def stream(self, text: str, voice: Optional[VoiceOptions] = None, chunk_size: int = 4096) -> Iterator[bytes]:
        """Open a streaming synthesis request; errors surface before the first chunk."""
        voice = voice or VoiceOptions()
        response = self._post(self._speech_url(voice, "/stream"), text, voice, accept="audio/mpeg", stream=True)
        return self._iter_chunks(response, chunk_size)

    @staticmethod
    def _iter_chunks(response: requests.Response, chunk_size: int) -> Iterator[bytes]:
        with response:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk

    def list_voices(self) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise UpstreamError("ElevenLabs API key not configured")
        try:
            response = requests.get(
                f"{self.api_url}/voices",
                headers={"xi-api-key": self.api_key},
                timeout=config.TTS_TIMEOUT,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Could not connect to ElevenLabs: {e}") from e
        if not response.ok:
            raise UpstreamError(f"ElevenLabs API error: {response.status_code}")
        return response.json().get("voices", [])

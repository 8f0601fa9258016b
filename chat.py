"""
Chat session driving the animation pipeline one turn at a time.

A turn walks input -> generating -> rendering -> (audio) -> complete, calling
the HTTP endpoints in order and waiting for each. Any failure appends an
apology message and drops the session back to input.
"""

import uuid
import logging
import argparse
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from errors import PipelineError
from schemas import ChatMessage, GenerationResult


class PipelineClient:
    """Calls the backend endpoints over HTTP. Accepts any requests-like client."""

    def __init__(self, base_url: str = "http://127.0.0.1:8000", http=None, timeout: Optional[float] = 600):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = {"json": body}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        response = self.http.post(f"{self.base_url}{path}", **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.status_code >= 400 or not data.get("success"):
            message = data.get("details") or data.get("error") or f"HTTP {response.status_code}"
            raise PipelineError(message, status_code=response.status_code)
        return data

    @staticmethod
    def _field(data: Dict[str, Any], key: str, kind: type = str) -> Any:
        value = data.get(key)
        if not isinstance(value, kind):
            raise PipelineError(f"Malformed response from server: missing {key}")
        return value

    def generate(self, topic: str, difficulty: str) -> GenerationResult:
        data = self._field(self._post("/generate", {"topic": topic, "difficulty": difficulty}), "data", dict)
        try:
            return GenerationResult(**data)
        except ValidationError as e:
            raise PipelineError(f"Malformed response from server: {e.error_count()} invalid field(s) in data") from e

    def render(self, code: str, quality: str) -> str:
        return self._field(self._post("/render", {"code": code, "quality": quality}), "videoPath")

    def audio(self, text: str) -> str:
        return self._field(self._post("/audio", {"text": text}), "audio")

    def sync(self, video_path: str, audio_data: str) -> str:
        return self._field(self._post("/sync", {"videoPath": video_path, "audioData": audio_data}), "outputPath")


class ChatSession:
    """The single owned chat state; new_chat() resets it."""

    def __init__(self, client: PipelineClient, difficulty: str = "advanced", quality: str = "medium", narrate: bool = False):
        self.client = client
        self.difficulty = difficulty
        self.quality = quality
        self.narrate = narrate
        self.new_chat()

    def new_chat(self):
        self.messages: List[ChatMessage] = []
        self.step = "input"
        self.progress = 0
        self.loading = False
        self.result: Optional[GenerationResult] = None
        self.transitions: List[str] = [self.step]

    def _enter(self, step: str, progress: int):
        self.step = step
        self.progress = progress
        self.transitions.append(step)
        logging.debug(f"chat step -> {step} ({progress}%)")

    def _append(self, role: str, text: str, video_path: Optional[str] = None) -> ChatMessage:
        message = ChatMessage(id=uuid.uuid4().hex, role=role, text=text, video_path=video_path)
        self.messages.append(message)
        return message

    def submit(self, topic: str) -> Optional[ChatMessage]:
        """Run one turn. Returns the assistant reply, or None if the submission was refused."""
        if self.loading or not topic or not topic.strip():
            return None

        self.transitions = [self.step]
        self._append("user", topic)
        self.loading = True
        try:
            self._enter("generating", 10)
            self.result = self.client.generate(topic, self.difficulty)
            self.progress = 40

            self._enter("rendering", 50)
            video_path = self.client.render(self.result.script, self.quality)
            self.progress = 70

            if self.narrate:
                self._enter("audio", 85)
                audio = self.client.audio(self.result.explanation)
                video_path = self.client.sync(video_path, audio)

            reply = self._append("assistant", self.result.explanation, video_path)
            self._enter("complete", 100)
            return reply
        except (PipelineError, requests.RequestException) as e:
            logging.error(f"Generation error: {e}")
            reply = self._append("assistant", f"Sorry, I encountered an error: {e}. Please try again.")
            self._enter("input", 0)
            return reply
        finally:
            self.loading = False


def main(argv=None):
    parser = argparse.ArgumentParser(description="Ask for a math topic and get a narrated animation back.")
    parser.add_argument("--server", default="http://127.0.0.1:8000", help="Backend base URL")
    parser.add_argument("--quality", choices=["low", "medium", "high", "production"], default="medium")
    parser.add_argument("--narrate", action="store_true", help="Add ElevenLabs narration to the video")
    args = parser.parse_args(argv)

    session = ChatSession(PipelineClient(args.server), quality=args.quality, narrate=args.narrate)
    print("What would you like to learn? (empty line quits, /new starts a new chat)")
    while True:
        try:
            topic = input("> ").strip()
        except EOFError:
            break
        if not topic:
            break
        if topic == "/new":
            session.new_chat()
            continue

        reply = session.submit(topic)
        if reply is None:
            continue
        print(reply.text)
        if reply.video_path:
            print(f"🎥 {args.server}{reply.video_path}")


if __name__ == "__main__":
    main()

"""
Video and audio synchronisation with ffmpeg.

Combines rendered Manim animations with ElevenLabs narration, burns in
subtitles and retimes videos. Commands are built with ffmpeg-python so no
shell string is ever interpolated.
"""

import os
import logging
import subprocess
from typing import List, Optional, Sequence

import ffmpeg

import config
from errors import InputError, SyncError
from schemas import Caption, SyncOptions, SyncResult
from services import new_render_id

FADE_SECONDS = 0.5
SUBTITLE_STYLE = "FontName=Arial,FontSize=24,PrimaryColour=&HFFFFFF&,OutlineColour=&H000000&,Outline=2"


def format_srt_time(seconds: float) -> str:
    """Format seconds as an SRT timecode, HH:MM:SS,mmm."""
    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_srt(captions: Sequence[Caption]) -> str:
    cues = []
    for index, caption in enumerate(captions, start=1):
        cues.append(
            f"{index}\n{format_srt_time(caption.start_time)} --> {format_srt_time(caption.end_time)}\n{caption.text}\n"
        )
    return "\n".join(cues) + ("\n" if cues else "")


def build_audio_filters(options: SyncOptions, audio_duration: float) -> List[str]:
    filters = []
    if options.volume != 1.0:
        filters.append(f"volume={options.volume}")
    if options.fade_in:
        filters.append(f"afade=t=in:st=0:d={FADE_SECONDS}")
    if options.fade_out:
        start = max(audio_duration - FADE_SECONDS, 0.0)
        filters.append(f"afade=t=out:st={start:.3f}:d={FADE_SECONDS}")
    return filters


def speed_factor(current_duration: float, target_duration: float) -> float:
    return current_duration / target_duration


class MediaSynchronizer:
    """Runs ffprobe/ffmpeg against files under the public and scratch directories."""

    def __init__(
        self,
        public_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
        temp_dir: Optional[str] = None,
    ):
        self.public_dir = public_dir or config.PUBLIC_DIR
        self.output_dir = output_dir or config.ANIMATIONS_DIR
        self.temp_dir = temp_dir or config.TEMP_DIR

    def resolve_video(self, video_url: str) -> str:
        """Map a public URL like /animations/x.mp4 to a file inside the public directory."""
        public_root = os.path.realpath(self.public_dir)
        path = os.path.realpath(os.path.join(public_root, video_url.lstrip("/")))
        if os.path.commonpath([public_root, path]) != public_root:
            raise InputError("Video path must point inside the public directory")
        if not os.path.isfile(path):
            raise InputError(f"Video not found: {video_url}")
        return path

    def _public_url(self, filename: str) -> str:
        return f"{config.ANIMATIONS_URL}/{filename}"

    def probe_duration(self, path: str) -> float:
        try:
            info = ffmpeg.probe(path, cmd=config.FFPROBE_BIN)
        except ffmpeg.Error as e:
            details = e.stderr.decode("utf8", errors="replace") if e.stderr else "Unknown ffprobe error"
            raise SyncError(f"ffprobe failed for {os.path.basename(path)}: {details}") from e
        except OSError as e:
            raise SyncError(f"Could not run ffprobe: {e}") from e

        try:
            return float(info["format"]["duration"])
        except (KeyError, TypeError, ValueError) as e:
            raise SyncError(f"Could not read duration of {os.path.basename(path)}") from e

    def build_sync_stream(
        self,
        video_path: str,
        audio_path: str,
        output_path: str,
        video_duration: float,
        audio_duration: float,
        options: SyncOptions,
    ):
        """
        Pick the muxing strategy for the two durations.

        Narration longer than the animation loops the video; otherwise the video
        stream is copied. Either way the output ends with the shorter stream.
        """
        output_args = {"c:a": "aac", "shortest": None}
        if audio_duration > video_duration:
            video = ffmpeg.input(video_path, stream_loop=-1)
            output_args["c:v"] = "libx264"
        else:
            video = ffmpeg.input(video_path)
            output_args["c:v"] = "copy"

        filters = build_audio_filters(options, audio_duration)
        if filters:
            output_args["af"] = ",".join(filters)

        audio = ffmpeg.input(audio_path)
        return ffmpeg.output(video.video, audio.audio, output_path, **output_args)

    def _run(self, stream, timeout: int = config.SYNC_TIMEOUT):
        args = ffmpeg.compile(stream, cmd=config.FFMPEG_BIN, overwrite_output=True)
        logging.info(f"FFmpeg command: {' '.join(args)}")
        try:
            process = ffmpeg.run_async(
                stream, cmd=config.FFMPEG_BIN, pipe_stdout=True, pipe_stderr=True, overwrite_output=True
            )
        except OSError as e:
            raise SyncError(f"Could not run ffmpeg: {e}") from e

        try:
            _, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise SyncError(f"ffmpeg timed out after {timeout} seconds") from e

        if process.returncode != 0:
            details = stderr.decode("utf8", errors="replace").strip() if stderr else "Unknown FFmpeg error"
            logging.error(f"FFmpeg failed: {details}")
            raise SyncError(f"FFmpeg failed: {details.splitlines()[-1] if details else details}")

    def sync(self, video_url: str, audio_data: bytes, options: Optional[SyncOptions] = None) -> SyncResult:
        """Combine a rendered video with narration audio into a single file."""
        options = options or SyncOptions()
        video_path = self.resolve_video(video_url)

        sync_id = new_render_id("sync")
        temp_audio = os.path.join(self.temp_dir, f"{sync_id}_audio.mp3")
        output_name = f"{sync_id}_final.mp4"

        try:
            os.makedirs(self.temp_dir, exist_ok=True)
            os.makedirs(self.output_dir, exist_ok=True)
            with open(temp_audio, "wb") as f:
                f.write(audio_data)

            video_duration = self.probe_duration(video_path)
            audio_duration = self.probe_duration(temp_audio)
            logging.info(f"Syncing video ({video_duration:.2f}s) with audio ({audio_duration:.2f}s)")

            stream = self.build_sync_stream(
                video_path,
                temp_audio,
                os.path.join(self.output_dir, output_name),
                video_duration,
                audio_duration,
                options,
            )
            self._run(stream)
            return SyncResult(success=True, output_path=self._public_url(output_name))
        except SyncError as e:
            logging.error(f"Sync error: {e.message}")
            return SyncResult(success=False, error=e.message)
        finally:
            if os.path.exists(temp_audio):
                os.remove(temp_audio)

    def add_captions(self, video_url: str, captions: Sequence[Caption]) -> SyncResult:
        """Burn subtitles into a video."""
        video_path = self.resolve_video(video_url)

        caption_id = new_render_id("captions")
        subtitles_path = os.path.join(self.temp_dir, f"{caption_id}.srt")
        output_name = f"{caption_id}_captioned.mp4"

        try:
            os.makedirs(self.temp_dir, exist_ok=True)
            os.makedirs(self.output_dir, exist_ok=True)
            with open(subtitles_path, "w", encoding="utf-8") as f:
                f.write(build_srt(captions))

            stream = ffmpeg.input(video_path).output(
                os.path.join(self.output_dir, output_name),
                vf=f"subtitles={subtitles_path}:force_style='{SUBTITLE_STYLE}'",
                **{"c:a": "copy"},
            )
            self._run(stream)
            return SyncResult(success=True, output_path=self._public_url(output_name))
        except SyncError as e:
            logging.error(f"Captions error: {e.message}")
            return SyncResult(success=False, error=e.message)
        finally:
            if os.path.exists(subtitles_path):
                os.remove(subtitles_path)

    def adjust_speed(self, video_url: str, target_duration: float) -> SyncResult:
        """Retime a video so it lasts target_duration seconds."""
        if target_duration <= 0:
            raise InputError("Target duration must be positive")
        video_path = self.resolve_video(video_url)
        output_name = f"{new_render_id('speed')}_adjusted.mp4"

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            current_duration = self.probe_duration(video_path)
            if current_duration <= 0:
                raise SyncError(f"Video has no measurable duration: {video_url}")
            speed = speed_factor(current_duration, target_duration)
            stream = ffmpeg.input(video_path).output(
                os.path.join(self.output_dir, output_name),
                **{"filter:v": f"setpts={1 / speed:.6f}*PTS"},
            )
            self._run(stream)
            return SyncResult(success=True, output_path=self._public_url(output_name))
        except SyncError as e:
            logging.error(f"Speed adjustment error: {e.message}")
            return SyncResult(success=False, error=e.message)

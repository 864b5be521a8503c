"""FFmpeg-backed audio extraction from video files.

WHY: Uploading a whole video to get a transcript wastes bandwidth. The
speech-to-text model only needs the audio, and speech stays intelligible
at a very low bitrate. Re-encoding the audio track as 20 kbit/s MP3
shrinks a typical upload by two orders of magnitude.

HOW: AudioExtractor drives a MediaEngine through four steps: load the
input bytes, run the extraction command, read the output bytes, tear
down. FFmpegEngine is the default engine; it works in a private temp
directory and runs ffmpeg/ffprobe as asyncio subprocesses. Progress is
parsed from ``-progress pipe:1`` output and reported as a 0.0–1.0
fraction.

RULES:
- Extraction command: -i input.mp4 -map 0:a -b:a <bitrate> -acodec libmp3lame output.mp3
- Any engine failure raises ConversionError; there is no retry
- Progress callbacks are advisory: a failing callback is logged and ignored
- The engine's temp directory is always removed, success or failure
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Union

from upload_ai.config import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    AUDIO_CONTENT_TYPE,
    FFMPEG_BINARY,
    FFPROBE_BINARY,
)
from upload_ai.errors import ConversionError

logger = logging.getLogger(__name__)

INPUT_NAME = "input.mp4"
OUTPUT_NAME = "output.mp3"
ARTIFACT_FILENAME = "audio.mp3"

ProgressCallback = Callable[[float], None]
VideoSource = Union[bytes, str, Path]


@dataclass(frozen=True)
class AudioArtifact:
    """Compressed audio produced by the extractor, ready for upload."""

    data: bytes
    content_type: str = AUDIO_CONTENT_TYPE
    filename: str = ARTIFACT_FILENAME

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ExecResult:
    """Exit status and diagnostic log of one engine command."""

    returncode: int
    log: str = ""


class MediaEngine(Protocol):
    """A local transcoding capability.

    Names passed to write_file/read_file/exec are relative to the
    engine's own working area, never host paths.
    """

    def on_progress(self, callback: ProgressCallback) -> None: ...

    async def write_file(self, name: str, data: bytes) -> None: ...

    async def probe_duration(self, name: str) -> Optional[float]: ...

    async def exec(self, args: List[str], duration_s: Optional[float] = None) -> ExecResult: ...

    async def read_file(self, name: str) -> bytes: ...

    def close(self) -> None: ...


class FFmpegEngine:
    """MediaEngine running the ffmpeg and ffprobe binaries in a temp directory.

    WHY: ffmpeg is the only widely available tool that demuxes any
    container and encodes MP3. Running it as a subprocess keeps the
    Python side free of codec bindings.

    HOW: Each engine owns one temp directory. exec() launches ffmpeg with
    ``-progress pipe:1`` so key=value progress lines arrive on stdout,
    while stderr is drained concurrently into the diagnostic log.

    RULES:
    - One engine per extraction; close() removes the working directory
    - A missing or non-executable binary raises ConversionError, not OSError
    - Progress needs the input duration; without it only 1.0 is reported
    """

    def __init__(
        self,
        ffmpeg: str = FFMPEG_BINARY,
        ffprobe: str = FFPROBE_BINARY,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._ffprobe = ffprobe
        self._workdir = Path(tempfile.mkdtemp(prefix="upload_ai_ffmpeg_"))
        self._callbacks: List[ProgressCallback] = []

    @property
    def workdir(self) -> Path:
        return self._workdir

    def on_progress(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    async def write_file(self, name: str, data: bytes) -> None:
        await asyncio.to_thread((self._workdir / name).write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        path = self._workdir / name
        if not path.is_file():
            raise ConversionError("Engine produced no file named '{}'.".format(name))
        return await asyncio.to_thread(path.read_bytes)

    async def probe_duration(self, name: str) -> Optional[float]:
        """Return the container duration in seconds, or None if unknown."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffprobe,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                name,
                cwd=str(self._workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.debug("ffprobe could not be started (%s), progress will not be reported", exc)
            return None

        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            return None
        try:
            duration = float(stdout.decode("utf-8", "replace").strip())
        except ValueError:
            return None
        return duration if duration > 0 else None

    async def exec(self, args: List[str], duration_s: Optional[float] = None) -> ExecResult:
        cmd = [self._ffmpeg, "-y", "-hide_banner", "-nostats", "-progress", "pipe:1", *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self._workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ConversionError(
                "Media engine could not be started: '{}' ({}).".format(self._ffmpeg, exc.strerror or exc)
            ) from exc

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            async for raw in proc.stdout:
                fraction = parse_progress_line(raw.decode("utf-8", "replace"), duration_s)
                if fraction is not None:
                    self._emit_progress(fraction)
            returncode = await proc.wait()
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        finally:
            stderr = await stderr_task

        return ExecResult(returncode=returncode, log=stderr.decode("utf-8", "replace"))

    def close(self) -> None:
        shutil.rmtree(self._workdir, ignore_errors=True)

    def _emit_progress(self, fraction: float) -> None:
        for callback in list(self._callbacks):
            try:
                callback(fraction)
            except Exception:
                logger.warning("Progress callback raised; ignoring", exc_info=True)


def parse_progress_line(line: str, duration_s: Optional[float]) -> Optional[float]:
    """Turn one ``-progress`` key=value line into a completion fraction.

    RULES:
    - out_time_us / out_time_ms (both microseconds in ffmpeg) map to elapsed/duration
    - progress=end maps to 1.0
    - Anything else, or an unknown duration, maps to None
    - The result is clamped to [0.0, 1.0]
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 1.0
    if key not in ("out_time_us", "out_time_ms") or not duration_s:
        return None
    try:
        elapsed_s = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(1.0, elapsed_s / duration_s))


def build_extraction_args(bitrate: str = AUDIO_BITRATE) -> List[str]:
    """Arguments selecting the first input's audio streams and re-encoding as MP3."""
    return [
        "-i", INPUT_NAME,
        "-map", "0:a",
        "-b:a", bitrate,
        "-acodec", AUDIO_CODEC,
        OUTPUT_NAME,
    ]


class AudioExtractor:
    """Produce a low-bitrate MP3 artifact from an arbitrary video.

    WHY: The upload step needs a small, widely supported audio file, and
    the conversion state machine needs one call that either yields that
    file or fails with a single typed error.

    HOW: A fresh engine is built per extract() call from engine_factory,
    so concurrent extractions never share a working directory.

    RULES:
    - source may be raw bytes or a filesystem path
    - Empty or unreadable sources raise ConversionError before the engine runs
    - A video without an audio stream raises ConversionError
    """

    def __init__(
        self,
        engine_factory: Callable[[], MediaEngine] = FFmpegEngine,
        bitrate: str = AUDIO_BITRATE,
    ) -> None:
        self._engine_factory = engine_factory
        self._bitrate = bitrate

    async def extract(
        self,
        source: VideoSource,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AudioArtifact:
        data = await _read_source(source)
        if not data:
            raise ConversionError("Video file is empty.")

        logger.info("Converting %d bytes of video to audio", len(data))
        try:
            engine = self._engine_factory()
        except OSError as exc:
            raise ConversionError("Media engine could not be initialized: {}".format(exc)) from exc

        try:
            if on_progress is not None:
                engine.on_progress(on_progress)
            await engine.write_file(INPUT_NAME, data)
            duration_s = await engine.probe_duration(INPUT_NAME)
            result = await engine.exec(build_extraction_args(self._bitrate), duration_s=duration_s)
            if result.returncode != 0:
                raise ConversionError(_describe_failure(result))
            audio = await engine.read_file(OUTPUT_NAME)
        finally:
            engine.close()

        if not audio:
            raise ConversionError("Media engine produced an empty audio file.")

        logger.info("Conversion finished: %d bytes of audio", len(audio))
        return AudioArtifact(data=audio)


async def _read_source(source: VideoSource) -> bytes:
    if isinstance(source, bytes):
        return source
    path = Path(source)
    try:
        return await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        raise ConversionError("Could not read video file '{}': {}".format(path, exc)) from exc


def _describe_failure(result: ExecResult) -> str:
    if "matches no streams" in result.log or "does not contain any stream" in result.log:
        return "Video has no audio stream."
    tail = result.log.strip().splitlines()[-1:] or ["no output"]
    return "Audio extraction failed (exit code {}): {}".format(result.returncode, tail[0])

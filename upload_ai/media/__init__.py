"""Media package — local audio extraction.

WHY: The client must turn an arbitrary video into a compact audio file
before anything leaves the machine.

HOW: AudioExtractor orchestrates a MediaEngine; FFmpegEngine is the
default engine, backed by the ffmpeg/ffprobe binaries.
"""

from upload_ai.media.extractor import AudioArtifact, AudioExtractor, FFmpegEngine

__all__ = ["AudioArtifact", "AudioExtractor", "FFmpegEngine"]

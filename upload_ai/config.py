"""Configuration constants and .env loading.

WHY: The API URL, model names, timeouts and the extraction bitrate are
read by the client, the server and the CLI. Keeping them in one module
makes them easy to find and to override per deployment.

HOW: python-dotenv loads the .env file on import. Constants are plain
module-level values read from the environment with defaults. The
load_api_key() function gives a clear error when the key is missing.

RULES:
- Every default can be overridden via an environment variable
- The OpenAI API key is loaded from the environment, never hardcoded
- TRANSCRIPTION_LANGUAGE unset means the speech model auto-detects
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

API_BASE_URL = os.getenv("UPLOAD_AI_API_URL", "http://localhost:3333")
API_HOST = os.getenv("UPLOAD_AI_HOST", "0.0.0.0")
API_PORT = int(os.getenv("UPLOAD_AI_PORT", "3333"))

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))
"""Largest accepted audio upload (the speech-to-text API rejects bigger files)."""

SUPPORTED_UPLOAD_FORMATS: set[str] = {".mp3"}

# ---------------------------------------------------------------------------
# Language model and speech-to-text providers
# ---------------------------------------------------------------------------

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
OPENAI_TRANSCRIPTION_MODEL = os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "120"))
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE") or None

COMPLETION_MAX_SECONDS = float(os.getenv("COMPLETION_MAX_SECONDS", "300"))
"""Upper bound on a single relayed completion, disconnect or not."""

DEFAULT_TEMPERATURE = 0.5

# ---------------------------------------------------------------------------
# Audio extraction
# ---------------------------------------------------------------------------

FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = os.getenv("FFPROBE_BINARY", "ffprobe")
AUDIO_BITRATE = os.getenv("AUDIO_BITRATE", "20k")
AUDIO_CODEC = "libmp3lame"
AUDIO_CONTENT_TYPE = "audio/mpeg"


def load_api_key() -> str:
    """Load the OpenAI API key from the environment.

    WHY: The server cannot transcribe or complete without it. Failing at
    startup with a readable message beats a 401 on the first request.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "OpenAI API key not configured. "
            "Add OPENAI_API_KEY to the .env file or the environment."
        )
    return key

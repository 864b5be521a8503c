"""HTTP server package — FastAPI app for uploads, transcription and completions.

WHY: Transcription and language-model calls need API keys and long-lived
connections, so they run server-side behind a small HTTP API.

HOW: create_app() wires a MediaStore, a LanguageModelProvider and a
Transcriber into the routes; CompletionStreamProxy holds the relay logic.
"""

from upload_ai.server.app import create_app, run_api

__all__ = ["create_app", "run_api"]

"""Command-line interface for upload-ai.

WHY: The same pipeline a web UI would run (extract audio, upload,
request a transcript, generate completions) is useful from a terminal
and in scripts. The CLI also starts the API server.

HOW: argparse subcommands:
  serve                  run the FastAPI app with uvicorn
  upload VIDEO           run the conversion state machine on a video file
  complete VIDEO_ID      stream a completion for an uploaded video
Async work runs via asyncio.run(). Status messages go to stderr;
completion text goes to stdout so it can be piped.

RULES:
- Status output goes to stderr (not stdout)
- Any UploadAiError exits with status 1 and its message; Ctrl-C exits 130
- -v/--verbose enables DEBUG logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from upload_ai.client.api import TranscriptionTimeoutError, UploadAiClient
from upload_ai.client.conversion import (
    ConversionDependencies,
    ConversionStateMachine,
    Status,
)
from upload_ai.config import (
    API_BASE_URL,
    API_HOST,
    API_PORT,
    AUDIO_BITRATE,
    DEFAULT_TEMPERATURE,
)
from upload_ai.errors import UploadAiError
from upload_ai.media.extractor import AudioExtractor

STATUS_MESSAGES = {
    Status.CONVERTING: "Converting...",
    Status.UPLOADING: "Uploading...",
    Status.GENERATION: "Transcribing...",
    Status.SUCCESS: "Success!",
}


def _status(msg: str) -> None:
    """Print a status message to stderr."""
    print(msg, file=sys.stderr, flush=True)


class _ProgressPrinter:
    """Print conversion progress in 10% steps."""

    def __init__(self) -> None:
        self._last = -1

    def __call__(self, fraction: float) -> None:
        pct = int(fraction * 100) // 10 * 10
        if pct > self._last:
            self._last = pct
            _status("  Convert progress: {}%".format(pct))


async def _run_upload(args: argparse.Namespace) -> None:
    input_path = Path(args.video).resolve()
    if not input_path.is_file():
        raise SystemExit("Error: File not found: {}".format(input_path))

    async with UploadAiClient(base_url=args.api_url) as client:
        deps = ConversionDependencies(
            extractor=AudioExtractor(bitrate=args.bitrate),
            uploader=client,
            transcriber=client,
            on_progress=_ProgressPrinter(),
        )
        machine = ConversionStateMachine(deps)
        machine.on_status(lambda status: _status(STATUS_MESSAGES.get(status, status.value)))

        machine.select_file(input_path)
        job = await machine.submit(prompt=args.prompt)
        _status("Video id: {}".format(job.media_id))

        if args.wait:
            transcription = await client.wait_for_transcription(job.media_id, on_status=_status)
            print(transcription)
        else:
            print(job.media_id)


async def _run_complete(args: argparse.Namespace) -> None:
    async with UploadAiClient(base_url=args.api_url) as client:
        template = args.template
        if template is None:
            prompts = {p.id: p for p in await client.list_prompts()}
            if args.prompt_id not in prompts:
                raise SystemExit(
                    "Error: Unknown prompt '{}'. Available: {}".format(
                        args.prompt_id, ", ".join(sorted(prompts))
                    )
                )
            template = prompts[args.prompt_id].template

        if args.no_stream:
            print(await client.complete(args.video_id, template, args.temperature))
            return

        async for fragment in client.stream_completion(args.video_id, template, args.temperature):
            sys.stdout.write(fragment)
            sys.stdout.flush()
        sys.stdout.write("\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    RULES:
    - upload: positional video path; --prompt, --wait, --bitrate
    - complete: positional video id; exactly one of --template / --prompt-id
    - serve: --host, --port
    """
    parser = argparse.ArgumentParser(
        prog="upload-ai",
        description="Extract, upload and transcribe videos, then generate completions "
                    "from their transcripts.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the upload-ai HTTP API.")
    serve.add_argument("--host", default=API_HOST, help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=API_PORT, help="Port (default: %(default)s).")

    upload = sub.add_parser("upload", help="Convert a video to audio, upload it and request a transcript.")
    upload.add_argument("video", help="Path to the video file.")
    upload.add_argument(
        "--prompt",
        default=None,
        help="Transcription guidance, e.g. comma-separated keywords mentioned in the video.",
    )
    upload.add_argument("--wait", action="store_true", help="Wait for and print the transcript.")
    upload.add_argument("--bitrate", default=AUDIO_BITRATE, help="Audio bitrate (default: %(default)s).")
    upload.add_argument("--api-url", default=API_BASE_URL, help="API base URL (default: %(default)s).")

    complete = sub.add_parser("complete", help="Generate a completion from a video's transcript.")
    complete.add_argument("video_id", help="ID returned by the upload command.")
    source = complete.add_mutually_exclusive_group(required=True)
    source.add_argument("--template", help="Prompt template containing {transcription}.")
    source.add_argument("--prompt-id", help="ID of a built-in prompt (see GET /prompts).")
    complete.add_argument(
        "--temperature",
        type=float,
        default=DEFAULT_TEMPERATURE,
        help="Sampling temperature between 0 and 1 (default: %(default)s).",
    )
    complete.add_argument("--no-stream", action="store_true", help="Wait for the full completion.")
    complete.add_argument("--api-url", default=API_BASE_URL, help="API base URL (default: %(default)s).")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the upload-ai console script and ``python -m upload_ai``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
    )

    if args.command == "serve":
        from upload_ai.server.app import run_api

        run_api(host=args.host, port=args.port)
        return

    runner = _run_upload if args.command == "upload" else _run_complete
    try:
        asyncio.run(runner(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except (UploadAiError, TranscriptionTimeoutError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

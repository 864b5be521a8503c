"""Response dataclasses for the upload-ai HTTP API, as seen by the client.

WHY: The API returns plain JSON. Typed dataclasses make the fields the
client relies on explicit and keep dict-key typos out of callers.

HOW: Each dataclass maps 1:1 to a JSON object and has a from_dict()
factory that tolerates extra keys.

RULES:
- transcription is None until the server-side transcription finishes
- Field names are snake_case; the JSON uses camelCase where the API does
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VideoRecord:
    """A MediaItem as returned by POST /videos and GET /videos/{id}."""

    id: str
    name: str
    transcription: str | None = None
    created_at: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> VideoRecord:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            transcription=data.get("transcription"),
            created_at=data.get("createdAt"),
        )

    @property
    def is_transcribed(self) -> bool:
        return self.transcription is not None


@dataclass(frozen=True)
class PromptTemplate:
    """A reusable completion template containing the {transcription} placeholder."""

    id: str
    title: str
    template: str

    @classmethod
    def from_dict(cls, data: dict) -> PromptTemplate:
        return cls(id=data["id"], title=data["title"], template=data["template"])

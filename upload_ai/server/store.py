"""In-memory media store for uploaded audio and its transcript.

WHY: The API needs to keep each uploaded audio file and, later, its
transcript, and the completion relay needs to read that transcript
while other requests write new items. An in-memory store is enough for
a single-process service; the persistence engine is out of scope.

HOW: Two components work together:
  MediaItem   — dataclass holding the item's metadata and transcript
  MediaStore  — thread-safe dict-based store with create/get/set/delete

RULES:
- All store access is protected by threading.Lock
- Each item gets a dedicated temp directory holding its audio file
- Item IDs are UUID4 strings (with dashes) generated at creation time
- transcription is written exactly once; a second write raises
  TranscriptAlreadySetError
- get_item() returns a snapshot copy, so readers never see a torn update
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional

from upload_ai.errors import MediaNotFoundError, TranscriptAlreadySetError

logger = logging.getLogger(__name__)


@dataclass
class MediaItem:
    """One uploaded video's derived audio and its transcript.

    RULES:
    - id: UUID4 string, unique and immutable after creation
    - name: original uploaded filename (for display)
    - path: audio file on disk, inside the item's temp directory
    - created_at: epoch timestamp when the item was created
    - transcription: None until the transcription completes
    """

    id: str
    name: str
    path: Path
    created_at: float
    transcription: Optional[str] = None


class MediaStore:
    """Thread-safe in-memory store for media items.

    WHY: Upload requests, background transcription tasks and concurrent
    completion relays all touch the same items. A centralized store with
    locking prevents lost updates and gives one place to enforce the
    write-once transcript rule.

    HOW: Items are stored in a plain dict keyed by ID. Every method takes
    the lock. File I/O for deletion happens outside the lock.
    """

    def __init__(self, root_dir: Optional[Path] = None) -> None:
        self._items: Dict[str, MediaItem] = {}
        self._lock = threading.Lock()
        self._root_dir = root_dir

    def create_item(self, name: str, data: bytes) -> MediaItem:
        """Store uploaded audio under a new ID and return the item.

        RULES:
        - The audio is written to <tempdir>/<name> before the item is visible
        """
        item_id = str(uuid.uuid4())
        item_dir = Path(tempfile.mkdtemp(prefix="upload_ai_media_", dir=self._root_dir))
        path = item_dir / name
        path.write_bytes(data)

        item = MediaItem(id=item_id, name=name, path=path, created_at=time.time())
        with self._lock:
            self._items[item_id] = item

        logger.info("Stored media item %s (%s, %d bytes)", item_id, name, len(data))
        return replace(item)

    def get_item(self, item_id: str) -> Optional[MediaItem]:
        """Return a copy of the item, or None for unknown IDs."""
        with self._lock:
            item = self._items.get(item_id)
            return replace(item) if item is not None else None

    def require_item(self, item_id: str) -> MediaItem:
        """Like get_item() but raises MediaNotFoundError for unknown IDs."""
        item = self.get_item(item_id)
        if item is None:
            raise MediaNotFoundError(item_id)
        return item

    def list_items(self) -> List[MediaItem]:
        """Return copies of all items, oldest first."""
        with self._lock:
            return [replace(i) for i in sorted(self._items.values(), key=lambda i: i.created_at)]

    def set_transcription(self, item_id: str, transcription: str) -> MediaItem:
        """Record the item's transcript.

        RULES:
        - Raises MediaNotFoundError if the item does not exist
        - Raises TranscriptAlreadySetError if a transcript was already stored
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise MediaNotFoundError(item_id)
            if item.transcription is not None:
                raise TranscriptAlreadySetError(item_id)
            item.transcription = transcription
            snapshot = replace(item)

        logger.info("Stored transcription for media item %s (%d chars)", item_id, len(transcription))
        return snapshot

    def delete_item(self, item_id: str) -> bool:
        """Delete an item and its temp directory. Returns False for unknown IDs."""
        with self._lock:
            item = self._items.pop(item_id, None)

        if item is None:
            return False

        item_dir = item.path.parent
        if item_dir.exists():
            try:
                shutil.rmtree(item_dir)
            except OSError:
                logger.warning("Failed to clean up media dir: %s", item_dir)
        logger.info("Deleted media item %s", item_id)
        return True

    def clear(self) -> None:
        """Delete every item."""
        for item in self.list_items():
            self.delete_item(item.id)

"""Generation record storage for the relay.

Records live in an ordered in-memory list that is mirrored to a single JSON
file (``videos.json``).  There is no database: the whole list is rewritten on
every :meth:`RecordStore.persist`, so two requests finalising different
generations at the same moment can race and the last writer wins.

The store owns three rules that every record obeys:

- inline base64 image data never reaches disk or a caller; ``imageUrl`` values
  holding it are nulled and prompts holding it are replaced with a sentinel
- an update without an ``imageUrl`` never erases a previously known one
- readers receive scrubbed copies, never the stored dictionaries

Legacy files written by older releases are repaired once when loaded (see
:func:`sanitize_records`).
"""

from __future__ import annotations

import copy
import json
import logging
import time
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from mediarelay.core.errors import PersistenceWriteFailure
from mediarelay.core.image_store import is_inline_image
from mediarelay.core.prompts import (
    DEFAULT_CLIENT,
    IMAGE_PROMPT_SENTINEL,
    PLACEHOLDER_CLIENT,
)

logger = logging.getLogger(__name__)

RecordType = Literal["video", "image", "luma-image"]

DEFAULT_BACKGROUND = "#111111"

# Written by older releases when a generation had no usable prompt.
NO_PROMPT_SENTINEL = "No prompt provided"

_PROMPT_FIELDS = ("prompt", "originalPrompt")


class GenerationRecord(BaseModel):
    """One submitted video or image job.

    Keys are camelCase because the record file and the HTTP responses share
    the same shape.  Unknown keys found in older files are preserved.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    type: RecordType = "video"
    url: str | None = None
    imageUrl: str | None = None
    title: str | None = None
    client: str | None = None
    background: str = DEFAULT_BACKGROUND
    prompt: str | None = None
    originalPrompt: str | None = None
    imageDescription: str | None = None
    model: str | None = None
    state: str | None = None
    timestamp: str = Field(default_factory=lambda: _now_iso())

    def to_record(self) -> dict[str, Any]:
        """Dump to the plain dictionary form the store works with."""
        return self.model_dump()


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()) + "Z"


def record_type(record: dict) -> str:
    """Return the record's type, treating a missing type as ``video``."""
    return record.get("type") or "video"


def scrub_record(record: dict) -> dict:
    """Strip inline image data from a record in place.

    Returns:
        The same dictionary, for chaining.
    """
    if is_inline_image(record.get("imageUrl")):
        record["imageUrl"] = None
    if is_inline_image(record.get("url")):
        record["url"] = None
    for key in _PROMPT_FIELDS:
        if is_inline_image(record.get(key)):
            record[key] = IMAGE_PROMPT_SENTINEL
    return record


def sanitize_records(records: list[dict]) -> list[dict]:
    """Repair records written by older releases.

    - back-fill a missing ``background`` or ``id``
    - rename the legacy placeholder client to the default client
    - restore ``prompt`` from ``originalPrompt`` when it holds the "no prompt"
      sentinel and the original is real text
    - scrub inline image data

    Args:
        records: Raw record dictionaries, modified in place.

    Returns:
        The same list.
    """
    stamp = int(time.time() * 1000)
    for index, record in enumerate(records):
        if not record.get("background"):
            record["background"] = DEFAULT_BACKGROUND
        if not record.get("id"):
            record["id"] = f"legacy-{index}-{stamp}"
        client = record.get("client")
        if isinstance(client, str) and client.strip().upper() == PLACEHOLDER_CLIENT:
            record["client"] = DEFAULT_CLIENT

        original = record.get("originalPrompt")
        if (
            record.get("prompt") == NO_PROMPT_SENTINEL
            and isinstance(original, str)
            and original.strip()
            and not is_inline_image(original)
        ):
            record["prompt"] = original

        scrub_record(record)
    return records


def load_records(path: Path) -> list[dict]:
    """Read the record file, returning an empty list on any problem.

    A missing file is normal on first start.  Unreadable content or a JSON
    document that is not a list is logged and treated as empty.
    """
    if not path.exists():
        return []
    try:
        with open(path, encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.error(f"Could not read records from {path}, starting empty: {exc}")
        return []

    if not isinstance(raw, list):
        logger.error(f"Record file {path} does not contain a list, starting empty")
        return []

    return [entry for entry in raw if isinstance(entry, dict)]


def save_records(path: Path, records: list[dict]) -> None:
    """Overwrite the record file with *records*.

    Raises:
        PersistenceWriteFailure: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(records, handle, indent=2)
    except (OSError, TypeError, ValueError) as exc:
        raise PersistenceWriteFailure(path, exc) from exc


class RecordStore:
    """In-memory record list mirrored to a JSON file.

    Args:
        path: Location of the JSON record file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: list[dict] = []

    def __len__(self) -> int:
        return len(self._records)

    def load_all(self) -> list[dict]:
        """Load and sanitise the record file, replacing the in-memory list.

        When sanitising changed anything the repaired list is written back
        immediately.
        """
        raw = load_records(self.path)
        before = copy.deepcopy(raw)
        self._records = sanitize_records(raw)
        if self._records != before:
            logger.info(f"Repaired legacy records in {self.path}")
            self.persist()
        logger.info(f"Loaded {len(self._records)} records from {self.path}")
        return self.list_all()

    def upsert(self, record: dict) -> dict:
        """Insert a record or merge it over the existing one with the same id.

        Keys present in *record* replace stored values, except that a null or
        missing ``imageUrl`` never replaces a known one.

        Returns:
            A scrubbed copy of the stored record.
        """
        incoming = scrub_record(dict(record))
        record_id = incoming.get("id")
        if not record_id:
            raise ValueError("record must have an id")

        existing = self._find(record_id)
        if existing is None:
            self._records.append(incoming)
            return copy.deepcopy(incoming)

        known_image = existing.get("imageUrl")
        existing.update(incoming)
        if not existing.get("imageUrl") and known_image:
            existing["imageUrl"] = known_image
        return copy.deepcopy(existing)

    def find_by_id(self, record_id: str) -> dict | None:
        """Return a scrubbed copy of the record with *record_id*, if any."""
        record = self._find(record_id)
        if record is None:
            return None
        return scrub_record(copy.deepcopy(record))

    def list_all(self, record_type_filter: str | None = None) -> list[dict]:
        """Return scrubbed copies of all records in stored order.

        Args:
            record_type_filter: Optional type to keep; a record without a
                type counts as ``video``.
        """
        records = self._records
        if record_type_filter:
            records = [r for r in records if record_type(r) == record_type_filter]
        return [scrub_record(copy.deepcopy(r)) for r in records]

    def persist(self) -> Path | None:
        """Write the full list to disk.

        Returns:
            The record file path, or ``None`` when the write failed.  Failures
            are logged and never raised.
        """
        try:
            save_records(self.path, self._records)
        except PersistenceWriteFailure as exc:
            logger.error(exc.message, exc_info=True)
            return None
        return self.path

    def _find(self, record_id: str) -> dict | None:
        return next((r for r in self._records if r.get("id") == record_id), None)
